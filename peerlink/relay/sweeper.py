"""Evict peers which stop sending messages."""
from __future__ import annotations

import asyncio
import logging

from peerlink.relay.server import RelayServer
from peerlink.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)

IDLE_CLOSE_CODE = 1000
IDLE_CLOSE_REASON = 'Idle timeout.'


async def sweep_idle_peers(
    server: RelayServer,
    timeout: float,
    now: float | None = None,
) -> list[str]:
    """Disconnect peers which have not sent a message within `timeout`.

    Each idle peer is unregistered, the remaining peers are notified, and
    then the peer's connection is closed. Peers which disconnect on their
    own between being listed and being closed are skipped.

    Args:
        server: Relay server to evict idle peers from.
        timeout: Seconds since a peer was last seen after which it is idle.
        now: Current time according to the registry's clock. Defaults to
            [`PeerRegistry.now()`][peerlink.relay.registry.PeerRegistry.now].

    Returns:
        Ids of peers which were evicted.
    """
    now = server.registry.now() if now is None else now
    idle = server.registry.list_idle_before(now - timeout)
    if len(idle) == 0:
        return []

    closed = await asyncio.gather(
        *(
            server.close_peer(
                peer_id,
                code=IDLE_CLOSE_CODE,
                reason=IDLE_CLOSE_REASON,
            )
            for peer_id in idle
        ),
    )
    evicted = [peer_id for peer_id, ok in zip(idle, closed) if ok]
    if len(evicted) > 0:
        logger.info(
            f'Evicted {len(evicted)} peer(s) idle for more than {timeout}s: '
            f'{", ".join(evicted)}',
        )
    return evicted


def periodic_idle_sweeper(
    server: RelayServer,
    interval: float = 30,
    timeout: float = 120,
) -> asyncio.Task[None]:
    """Create an asyncio task which periodically evicts idle peers.

    Args:
        server: Relay server instance to evict idle peers from.
        interval: Seconds between sweeps.
        timeout: Seconds since a peer was last seen after which it is idle.

    Returns:
        Asyncio task.
    """

    async def _sweep() -> None:
        while True:
            await asyncio.sleep(interval)
            await sweep_idle_peers(server, timeout)

    task = spawn_guarded_background_task(_sweep)
    task.set_name('relay-server-idle-sweeper')

    return task
