"""Relay server implementation for introducing WebRTC peers.

The relay server (or signaling server) is a lightweight server accessible by
all peers (e.g., has a public IP address) that tracks which peers are online
and forwards session descriptions and ICE candidates between them so the
peers can establish a direct connection. The relay server never carries
the traffic of the direct connection.
"""
from __future__ import annotations

import http
import json
import logging
import sys
import urllib.parse
from typing import Any
from typing import Iterable

import websockets.exceptions
from websockets.asyncio.server import broadcast
from websockets.asyncio.server import ServerConnection
from websockets.http11 import Request
from websockets.http11 import Response

from peerlink.relay.exceptions import EventDecodeError
from peerlink.relay.exceptions import MessageEncodeError
from peerlink.relay.messages import decode_event
from peerlink.relay.messages import encode_message
from peerlink.relay.messages import InboundEvent
from peerlink.relay.messages import Message
from peerlink.relay.messages import NewPeer
from peerlink.relay.messages import PeerLeft
from peerlink.relay.messages import Welcome
from peerlink.relay.registry import Peer
from peerlink.relay.registry import PeerRegistry
from peerlink.relay.registry import RelayAddress
from peerlink.relay.router import all_peers_except
from peerlink.relay.router import identified_peers
from peerlink.relay.router import route

logger = logging.getLogger(__name__)

SERVICE_NAME = 'peerlink relay server'


def format_address(address: Any) -> str:
    """Format the remote address of a connection as `host:port`."""
    if isinstance(address, tuple) and len(address) >= 2:
        return f'{address[0]}:{address[1]}'
    return str(address)


def relay_address_from_path(path: str) -> RelayAddress | None:
    """Parse an advertised relay address from the request query.

    Peers may advertise the address they can be reached on directly
    when connecting with `?host=<host>&port=<port>`. Missing or invalid
    values are ignored.
    """
    query = urllib.parse.parse_qs(urllib.parse.urlsplit(path).query)
    hosts, ports = query.get('host', []), query.get('port', [])
    if len(hosts) != 1 or len(ports) != 1:
        return None
    try:
        port = int(ports[0])
    except ValueError:
        return None
    return (hosts[0], port) if 0 < port < 65536 else None


class RelayServer:
    """WebRTC relay server.

    The relay server accepts websocket connections from peers, assigns each
    connection a random peer id, and relays signaling messages between
    peers by id. Every connected peer is notified when another peer
    connects, identifies itself, or leaves.

    The relay server is built on websockets and designed to be
    served using [`serve()`][peerlink.relay.run.serve]. The same port also
    answers plain HTTP requests using
    [`process_request()`][peerlink.relay.server.RelayServer.process_request].

    Args:
        registry: Registry of connected peers. A new registry is created
            if not provided.
        idle_timeout: Seconds since a peer was last seen after which the
            peer is no longer listed by the peer address endpoint. The idle
            sweeper uses the same timeout to disconnect peers.
        announce_connections: Send a
            [`NewPeer`][peerlink.relay.messages.NewPeer] message to all
            other peers when a peer connects. Peers always receive a
            [`PeerJoined`][peerlink.relay.messages.PeerJoined] message
            when a peer identifies itself.
        max_message_bytes: Optional maximum size of client messages in bytes.
            Clients that send oversized messages will have their connections
            closed. Note that message size is computed using
            [`sys.getsizeof()`][sys.getsizeof] so will also include the
            PyObject overhead.
    """

    def __init__(
        self,
        registry: PeerRegistry | None = None,
        *,
        idle_timeout: float = 120,
        announce_connections: bool = True,
        max_message_bytes: int | None = None,
    ) -> None:
        self._registry = PeerRegistry() if registry is None else registry
        self._idle_timeout = idle_timeout
        self._announce_connections = announce_connections
        self._max_message_bytes = max_message_bytes

    @property
    def registry(self) -> PeerRegistry:
        """Registry of connected peers."""
        return self._registry

    @property
    def idle_timeout(self) -> float:
        """Seconds without messages after which a peer is idle."""
        return self._idle_timeout

    def send(self, recipients: Iterable[str], message: Message) -> None:
        """Send a message to peers.

        Sending never waits on the network. The message is encoded once and
        written to each recipient's connection with
        [`broadcast()`][websockets.asyncio.server.broadcast], which skips
        connections that are not open and logs, rather than raises, write
        failures so one unusable connection does not affect the others.
        Recipients which are no longer registered are skipped.

        Args:
            recipients: Ids of peers to send the message to.
            message: Message to encode and send.
        """
        try:
            message_str = encode_message(message)
        except MessageEncodeError as e:
            logger.error(f'Failed to encode message: {e}')
            return

        connections = []
        for peer_id in recipients:
            peer = self.registry.get(peer_id)
            if peer is not None:
                connections.append(peer.websocket)

        broadcast(connections, message_str)

    def connect(self, websocket: ServerConnection) -> str:
        """Register a new connection and introduce it to the other peers.

        Args:
            websocket: Newly opened websocket connection.

        Returns:
            Peer id assigned to the connection.
        """
        origin = format_address(websocket.remote_address)
        relay_address = (
            relay_address_from_path(websocket.request.path)
            if websocket.request is not None
            else None
        )
        peer_id = self.registry.register(websocket, origin, relay_address)
        logger.info(
            f'Registered peer {peer_id} from {origin} '
            f'({len(self.registry)} connected)',
        )

        self.send([peer_id], Welcome(peer_id, identified_peers(self.registry)))
        if self._announce_connections:
            self.send(
                all_peers_except(self.registry, peer_id),
                NewPeer(peer_id),
            )
        return peer_id

    def disconnect(self, peer_id: str) -> Peer | None:
        """Unregister a peer and notify the remaining peers.

        Safe to call more than once for the same peer. Only the call which
        removes the peer notifies the remaining peers.

        Args:
            peer_id: Id of peer to unregister.

        Returns:
            The removed peer or `None` if the peer was already removed.
        """
        peer = self.registry.remove(peer_id)
        if peer is None:
            return None

        logger.info(
            f'Unregistered peer {peer_id} ({peer.alias or "unidentified"}) '
            f'({len(self.registry)} connected)',
        )
        self.send(
            [p.peer_id for p in self.registry.list()],
            PeerLeft(peer_id),
        )
        return peer

    async def close_peer(
        self,
        peer_id: str,
        code: int = 1000,
        reason: str = '',
    ) -> bool:
        """Unregister a peer and close its connection.

        The peer is unregistered, and the remaining peers notified, before
        the websocket closing handshake starts so the peer is never routable
        after this is called.

        Args:
            peer_id: Id of peer to disconnect.
            code: Websocket close code.
            reason: Websocket close reason.

        Returns:
            `False` if the peer was not registered.
        """
        peer = self.disconnect(peer_id)
        if peer is None:
            return False
        await peer.websocket.close(code=code, reason=reason)
        return True

    def process_event(self, peer_id: str, event: InboundEvent) -> None:
        """Route an event from a peer and send the resulting messages."""
        for delivery in route(self.registry, peer_id, event):
            self.send(delivery.recipients, delivery.message)

    def peer_addresses(self) -> list[dict[str, Any]]:
        """List direct connection addresses of live, identified peers.

        Only peers which have set an alias, advertised a relay address, and
        been seen within the idle timeout are included.
        """
        threshold = self.registry.now() - self.idle_timeout
        return [
            {
                'username': peer.alias,
                'host': peer.relay_address[0],
                'port': peer.relay_address[1],
            }
            for peer in self.registry.list()
            if peer.alias is not None
            and peer.relay_address is not None
            and peer.last_seen >= threshold
        ]

    def process_request(
        self,
        connection: ServerConnection,
        request: Request,
    ) -> Response | None:
        """Answer plain HTTP requests sent to the websocket port.

        - `GET /`: health check with the number of connected peers.
        - `GET /peers`: direct connection addresses from
          [`peer_addresses()`][peerlink.relay.server.RelayServer.peer_addresses].

        Requests to upgrade the connection to a websocket are passed
        through to the websocket handshake.

        Args:
            connection: Connection the request was received on.
            request: HTTP request.

        Returns:
            JSON response or `None` to continue the websocket handshake.
        """
        if request.headers.get('Upgrade', '').lower() == 'websocket':
            return None

        path = urllib.parse.urlsplit(request.path).path
        status = http.HTTPStatus.OK
        body: dict[str, Any]
        if path == '/':
            body = {
                'service': SERVICE_NAME,
                'status': 'running',
                'connectedPeers': len(self.registry),
            }
        elif path == '/peers':
            body = {'peers': self.peer_addresses()}
        else:
            status = http.HTTPStatus.NOT_FOUND
            body = {'error': f'Unknown path {path}.'}

        response = connection.respond(status, json.dumps(body))
        del response.headers['Content-Type']
        response.headers['Content-Type'] = 'application/json'
        return response

    async def handler(self, websocket: ServerConnection) -> None:
        """Websocket server connection handler.

        Registers the connection as a new peer and then processes messages
        from the peer one at a time in the order they are received.
        Malformed messages are logged and dropped without closing the
        connection. Every message, including malformed ones, refreshes the
        peer's last seen time. The handler will close the connection if the
        peer sends a message larger than the allowed size (code 4003).

        The peer is unregistered when the connection closes for any reason.

        Args:
            websocket: Websocket connection to the peer.
        """
        peer_id = self.connect(websocket)
        try:
            await self._receive(peer_id, websocket)
        finally:
            self.disconnect(peer_id)

    async def _receive(
        self,
        peer_id: str,
        websocket: ServerConnection,
    ) -> None:
        while True:
            try:
                message_str = await websocket.recv()
            except websockets.exceptions.ConnectionClosedOK:
                logger.debug(f'Connection to peer {peer_id} closed')
                break
            except websockets.exceptions.ConnectionClosedError as e:
                logger.info(
                    f'Connection to peer {peer_id} closed unexpectedly: {e}',
                )
                break

            if (
                self._max_message_bytes is not None
                and sys.getsizeof(message_str) > self._max_message_bytes
            ):
                logger.warning(
                    f'Peer {peer_id} sent message with size '
                    f'{sys.getsizeof(message_str)} bytes which exceeds '
                    f'the max configured size of {self._max_message_bytes} '
                    'bytes. Connection closed with error code 4003',
                )
                self.disconnect(peer_id)
                await websocket.close(
                    4003,
                    reason='Message length exceeds limit.',
                )
                break

            # Malformed frames still count as activity
            self.registry.touch(peer_id)

            try:
                event = decode_event(message_str)
            except EventDecodeError as e:
                logger.warning(
                    f'Dropping malformed message from peer {peer_id}: {e}',
                )
                continue

            self.process_event(peer_id, event)
