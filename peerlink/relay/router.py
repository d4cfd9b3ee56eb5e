"""Routing rules for events received from peers.

The router decides who receives what in response to an event. It reads and
updates the [`PeerRegistry`][peerlink.relay.registry.PeerRegistry] but
performs no I/O: delivering the returned messages is the responsibility
of the [`RelayServer`][peerlink.relay.server.RelayServer].
"""
from __future__ import annotations

import logging
from typing import NamedTuple
from typing import Sequence

from peerlink.relay.messages import Forward
from peerlink.relay.messages import Heartbeat
from peerlink.relay.messages import Identify
from peerlink.relay.messages import InboundEvent
from peerlink.relay.messages import Message
from peerlink.relay.messages import PeerJoined
from peerlink.relay.messages import PeerList
from peerlink.relay.messages import PeerSummary
from peerlink.relay.messages import Relay
from peerlink.relay.messages import UnknownEvent
from peerlink.relay.registry import PeerRegistry

logger = logging.getLogger(__name__)


class Delivery(NamedTuple):
    """Message to send to a set of peers."""

    recipients: Sequence[str]
    message: Message


def identified_peers(registry: PeerRegistry) -> list[PeerSummary]:
    """Get summaries of all peers which have set an alias."""
    return [
        PeerSummary(peer.peer_id, peer.alias)
        for peer in registry.list()
        if peer.alias is not None
    ]


def all_peers_except(registry: PeerRegistry, peer_id: str) -> list[str]:
    """Get ids of all registered peers other than `peer_id`."""
    return [p.peer_id for p in registry.list() if p.peer_id != peer_id]


def route(
    registry: PeerRegistry,
    sender_id: str,
    event: InboundEvent,
) -> list[Delivery]:
    """Apply an event from a peer.

    Any event refreshes the sender's last seen time. Then:

    - [`Heartbeat`][peerlink.relay.messages.Heartbeat]: nothing else.
    - [`Identify`][peerlink.relay.messages.Identify]: sets the sender's
      alias (and relay address if advertised), replies to the sender with
      the identified peers, and notifies all other peers that the sender
      joined. Repeating an identify overwrites the alias and notifies the
      other peers again.
    - [`Relay`][peerlink.relay.messages.Relay]: forwards the payload to
      the recipient with `from` set to the sender. Dropped if the recipient
      is not registered; the sender is not notified.
    - [`UnknownEvent`][peerlink.relay.messages.UnknownEvent]: ignored.

    Args:
        registry: Registry of connected peers.
        sender_id: Id of the peer the event was received from.
        event: Decoded event.

    Returns:
        Messages to deliver. Events from a peer which is no longer
        registered produce no messages.
    """
    if sender_id not in registry:
        logger.debug(f'Dropping event from unregistered peer {sender_id}')
        return []

    registry.touch(sender_id)

    if isinstance(event, Heartbeat):
        return []
    elif isinstance(event, Identify):
        registry.set_alias(sender_id, event.alias)
        if event.relay_address is not None:
            registry.set_relay_address(sender_id, event.relay_address)
        logger.info(f'Peer {sender_id} identified as {event.alias}')
        return [
            Delivery([sender_id], PeerList(identified_peers(registry))),
            Delivery(
                all_peers_except(registry, sender_id),
                PeerJoined(sender_id, event.alias),
            ),
        ]
    elif isinstance(event, Relay):
        if event.to not in registry:
            logger.debug(
                f'Dropping {event.kind.value} message from {sender_id} to '
                f'unknown peer {event.to}',
            )
            return []
        logger.debug(
            f'Forwarding {event.kind.value} message from {sender_id} '
            f'to {event.to}',
        )
        return [Delivery([event.to], Forward(event.forwarded_from(sender_id)))]
    elif isinstance(event, UnknownEvent):
        logger.debug(
            f'Ignoring message of unknown type {event.kind} from {sender_id}',
        )
        return []
    else:
        raise AssertionError('Unreachable.')
