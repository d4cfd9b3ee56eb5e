"""Registry of peers currently connected to a relay server."""
from __future__ import annotations

import dataclasses
import datetime
import secrets
import threading
import time
from typing import Callable
from typing import Tuple

from websockets.asyncio.server import ServerConnection

RelayAddress = Tuple[str, int]
"""`(host, port)` pair a peer advertises for direct connections."""

_PEER_ID_BYTES = 8


def _utc_current_time() -> datetime.datetime:
    # dataclasses.field's default_factory requires a zero argument callable
    return datetime.datetime.now(tz=datetime.timezone.utc)


def generate_peer_id() -> str:
    """Generate a random peer id.

    Ids are random hex strings rather than sequential counters so a client
    cannot guess the id of another peer and address messages to it.
    """
    return secrets.token_hex(_PEER_ID_BYTES)


@dataclasses.dataclass(eq=False)
class Peer:
    """Record of a peer connected to the relay server.

    Attributes:
        peer_id: Relay assigned id of the peer.
        websocket: Websocket connection to the peer.
        origin: Network address the connection was accepted from.
        alias: Display name set by the peer with an identify message.
        relay_address: Optional `(host, port)` the peer can be reached on
            directly.
        last_seen: Monotonic time of the last message received from the
            peer.
        created: Time the peer connected.
    """

    peer_id: str
    websocket: ServerConnection
    origin: str
    alias: str | None = None
    relay_address: RelayAddress | None = None
    last_seen: float = 0.0
    created: datetime.datetime = dataclasses.field(
        default_factory=_utc_current_time,
    )

    @property
    def identified(self) -> bool:
        """Peer has set an alias."""
        return self.alias is not None

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Peer):
            return self.peer_id == other.peer_id
        else:
            return False

    def __hash__(self) -> int:
        return hash(self.peer_id)

    def __repr__(self) -> str:
        created = self.created.strftime('%Y-%m-%d %H:%M:%S %Z')
        return (
            f'{self.__class__.__name__}(peer_id={self.peer_id}, '
            f'alias={self.alias}, origin={self.origin}, '
            f'relay_address={self.relay_address}, created={created})'
        )


class PeerRegistry:
    """Thread-safe mapping of peer ids to connected peers.

    All reads and writes go through a single lock. Methods which return
    [`Peer`][peerlink.relay.registry.Peer] records return copies so
    the caller never observes a record being modified concurrently.
    Operations on a peer that is no longer registered are no-ops.

    Args:
        clock: Callable returning the current time in seconds. Used for
            `last_seen` timestamps. Defaults to
            [`time.monotonic()`][time.monotonic].
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._peers: dict[str, Peer] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, peer_id: object) -> bool:
        with self._lock:
            return peer_id in self._peers

    def now(self) -> float:
        """Current time according to the registry's clock."""
        return self._clock()

    def register(
        self,
        websocket: ServerConnection,
        origin: str,
        relay_address: RelayAddress | None = None,
    ) -> str:
        """Register a newly accepted connection.

        Args:
            websocket: Connection to the peer.
            origin: Address the connection was accepted from.
            relay_address: Optional direct connection address.

        Returns:
            The id assigned to the new peer.
        """
        with self._lock:
            peer_id = generate_peer_id()
            while peer_id in self._peers:  # pragma: no cover
                peer_id = generate_peer_id()
            self._peers[peer_id] = Peer(
                peer_id=peer_id,
                websocket=websocket,
                origin=origin,
                relay_address=relay_address,
                last_seen=self._clock(),
            )
            return peer_id

    def touch(self, peer_id: str) -> None:
        """Set the last seen time of a peer to now."""
        with self._lock:
            peer = self._peers.get(peer_id, None)
            if peer is not None:
                peer.last_seen = self._clock()

    def set_alias(self, peer_id: str, alias: str) -> None:
        """Set the display alias of a peer."""
        with self._lock:
            peer = self._peers.get(peer_id, None)
            if peer is not None:
                peer.alias = alias

    def set_relay_address(
        self,
        peer_id: str,
        address: RelayAddress | None,
    ) -> None:
        """Set the direct connection address of a peer."""
        with self._lock:
            peer = self._peers.get(peer_id, None)
            if peer is not None:
                peer.relay_address = address

    def get(self, peer_id: str) -> Peer | None:
        """Get a copy of a peer's record if registered."""
        with self._lock:
            peer = self._peers.get(peer_id, None)
            return None if peer is None else dataclasses.replace(peer)

    def remove(self, peer_id: str) -> Peer | None:
        """Remove a peer.

        Returns:
            The removed record or `None` if the peer was not registered.
        """
        with self._lock:
            return self._peers.pop(peer_id, None)

    def list(self) -> list[Peer]:  # noqa: A003
        """Get copies of all registered peers in registration order."""
        with self._lock:
            return [dataclasses.replace(p) for p in self._peers.values()]

    def list_idle_before(self, threshold: float) -> list[str]:
        """Get ids of peers last seen before `threshold`."""
        with self._lock:
            return [
                peer_id
                for peer_id, peer in self._peers.items()
                if peer.last_seen < threshold
            ]
