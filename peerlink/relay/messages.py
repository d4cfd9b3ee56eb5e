"""Message types exchanged between peers and the relay server.

Every message is a JSON object with a `type` field. Messages sent by the
server are dataclasses encoded with
[`encode_message()`][peerlink.relay.messages.encode_message]; field names
are converted to camel case on the wire (e.g., `peer_id` becomes `peerId`).
Messages sent by peers are parsed with
[`decode_event()`][peerlink.relay.messages.decode_event] into one of the
[`InboundEvent`][peerlink.relay.messages.InboundEvent] types.
"""
from __future__ import annotations

import dataclasses
import enum
import json
from typing import Any
from typing import Dict
from typing import List
from typing import Union

from peerlink.relay.exceptions import EventDecodeError
from peerlink.relay.exceptions import MessageEncodeError
from peerlink.relay.registry import RelayAddress


class MessageType(enum.Enum):
    """Types of messages supported."""

    welcome = 'WELCOME'
    """Assigned id sent to a peer after it connects."""
    heartbeat = 'HEARTBEAT'
    """Liveness signal from a peer."""
    identify = 'IDENTIFY'
    """Peer setting its alias."""
    peer_list = 'PEER_LIST'
    """Identified peers sent in reply to an identify message."""
    peer_joined = 'PEER_JOINED'
    """A peer identified itself."""
    new_peer = 'NEW_PEER'
    """A peer connected."""
    peer_left = 'PEER_LEFT'
    """A peer disconnected or was evicted."""
    webrtc = 'WEBRTC'
    """Generic signaling message forwarded to another peer."""
    webrtc_offer = 'WEBRTC_OFFER'
    """Session description offer forwarded to another peer."""
    webrtc_answer = 'WEBRTC_ANSWER'
    """Session description answer forwarded to another peer."""
    ice_candidate = 'ICE_CANDIDATE'
    """ICE candidate forwarded to another peer."""


RELAY_MESSAGE_TYPES = frozenset(
    {
        MessageType.webrtc,
        MessageType.webrtc_offer,
        MessageType.webrtc_answer,
        MessageType.ice_candidate,
    },
)


@dataclasses.dataclass(frozen=True)
class Heartbeat:
    """Liveness signal from a peer."""

    pass


@dataclasses.dataclass(frozen=True)
class Identify:
    """Peer sets its display alias.

    Attributes:
        alias: Display alias.
        relay_address: Optional `(host, port)` the peer advertises for
            direct connections.
    """

    alias: str
    relay_address: RelayAddress | None = None


@dataclasses.dataclass(frozen=True)
class Relay:
    """Signaling message to forward to another peer.

    Attributes:
        kind: Relay message type.
        to: Id of the recipient peer.
        payload: The complete message as received. Forwarded unmodified
            except for the `from` field.
    """

    kind: MessageType
    to: str
    payload: Dict[str, Any]

    def forwarded_from(self, peer_id: str) -> dict[str, Any]:
        """Get the payload to forward with `from` set to `peer_id`."""
        payload = dict(self.payload)
        payload['from'] = peer_id
        return payload


@dataclasses.dataclass(frozen=True)
class UnknownEvent:
    """Well-formed message of a type the server does not handle.

    Attributes:
        kind: Value of the `type` field.
    """

    kind: str


InboundEvent = Union[Heartbeat, Identify, Relay, UnknownEvent]
"""Events that can be received from a peer."""


@dataclasses.dataclass
class PeerSummary:
    """Public information about an identified peer."""

    peer_id: str
    alias: str


@dataclasses.dataclass
class Message:
    """Base message sent by the server."""

    pass


@dataclasses.dataclass
class Welcome(Message):
    """First message sent to a peer after it connects.

    Attributes:
        peer_id: Id assigned to the peer.
        peers: Identified peers connected at the time.
    """

    peer_id: str
    peers: List[PeerSummary] = dataclasses.field(default_factory=list)
    type: str = MessageType.welcome.value  # noqa: A003


@dataclasses.dataclass
class PeerList(Message):
    """Identified peers currently connected."""

    peers: List[PeerSummary] = dataclasses.field(default_factory=list)
    type: str = MessageType.peer_list.value  # noqa: A003


@dataclasses.dataclass
class PeerJoined(Message):
    """A peer identified itself."""

    peer_id: str
    alias: str
    type: str = MessageType.peer_joined.value  # noqa: A003


@dataclasses.dataclass
class NewPeer(Message):
    """A peer connected but may not have identified itself yet."""

    peer_id: str
    type: str = MessageType.new_peer.value  # noqa: A003


@dataclasses.dataclass
class PeerLeft(Message):
    """A peer disconnected or was evicted."""

    peer_id: str
    type: str = MessageType.peer_left.value  # noqa: A003


@dataclasses.dataclass
class Forward(Message):
    """Relay payload forwarded verbatim to its recipient."""

    payload: Dict[str, Any]


def snake_to_camel(name: str) -> str:
    """Convert a snake case name to camel case."""
    first, *rest = name.split('_')
    return first + ''.join(part.capitalize() for part in rest)


def _camelize(data: Any) -> Any:
    if isinstance(data, dict):
        return {snake_to_camel(k): _camelize(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_camelize(v) for v in data]
    return data


def _parse_relay_address(data: dict[str, Any]) -> RelayAddress | None:
    host, port = data.get('host', None), data.get('port', None)
    if host is None and port is None:
        return None
    if (
        not isinstance(host, str)
        or isinstance(port, bool)
        or not isinstance(port, int)
    ):
        raise EventDecodeError(
            'Identify message relay address requires a string host and an '
            'integer port.',
        )
    return (host, port)


def decode_event(message: str | bytes) -> InboundEvent:
    """Decode a message received from a peer.

    Args:
        message: Raw websocket message.

    Returns:
        Parsed event. Messages with an unrecognized `type` are returned
        as [`UnknownEvent`][peerlink.relay.messages.UnknownEvent].

    Raises:
        EventDecodeError: If the message is not a JSON object with a string
            `type` field or is missing fields required by its type.
    """
    if isinstance(message, bytes):
        raise EventDecodeError('Got message as bytes but expected str.')

    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        raise EventDecodeError('Failed to load string as JSON.') from e

    if not isinstance(data, dict):
        raise EventDecodeError(
            f'Expected a JSON object but got {type(data).__name__}.',
        )

    kind = data.get('type', None)
    if not isinstance(kind, str):
        raise EventDecodeError('Message does not contain a string type key.')

    try:
        message_type = MessageType(kind)
    except ValueError:
        return UnknownEvent(kind)

    if message_type is MessageType.heartbeat:
        return Heartbeat()
    elif message_type is MessageType.identify:
        alias = data.get('alias', None)
        if not isinstance(alias, str) or len(alias) == 0:
            raise EventDecodeError(
                'Identify message does not contain a non-empty string alias.',
            )
        return Identify(alias, _parse_relay_address(data))
    elif message_type in RELAY_MESSAGE_TYPES:
        to = data.get('to', None)
        if not isinstance(to, str):
            raise EventDecodeError(
                f'{kind} message does not contain a string to key.',
            )
        return Relay(message_type, to, data)
    else:
        return UnknownEvent(kind)


def encode_message(message: Message) -> str:
    """Encode a message as a JSON string.

    Args:
        message: Message to JSON encode.

    Raises:
        MessageEncodeError: If the message cannot be JSON encoded.
    """
    if isinstance(message, Forward):
        data = message.payload
    elif isinstance(message, Message):
        data = _camelize(dataclasses.asdict(message))
    else:
        raise MessageEncodeError(
            f'Message is not an instance of {Message.__name__}. '
            f'Got {type(message).__name__}.',
        )

    try:
        return json.dumps(data)
    except (TypeError, ValueError) as e:
        raise MessageEncodeError('Error encoding message.') from e
