from __future__ import annotations

import threading

from peerlink.relay.registry import generate_peer_id
from peerlink.relay.registry import Peer
from peerlink.relay.registry import PeerRegistry
from testing.relay_server import mock_websocket
from testing.utils import FakeClock


def test_generate_peer_id() -> None:
    ids = {generate_peer_id() for _ in range(1000)}
    assert len(ids) == 1000
    assert all(len(peer_id) == 16 for peer_id in ids)


def test_peer_equality_and_repr() -> None:
    websocket = mock_websocket()
    peer = Peer('abc', websocket, '127.0.0.1:1234')
    assert peer == Peer('abc', mock_websocket(), '10.0.0.1:1')
    assert peer != Peer('def', websocket, '127.0.0.1:1234')
    assert peer != object()
    assert 'abc' in repr(peer)
    assert not peer.identified


def test_register_and_get() -> None:
    clock = FakeClock()
    registry = PeerRegistry(clock=clock)
    websocket = mock_websocket()

    peer_id = registry.register(websocket, '127.0.0.1:1234')

    assert peer_id in registry
    assert len(registry) == 1
    peer = registry.get(peer_id)
    assert peer is not None
    assert peer.websocket is websocket
    assert peer.origin == '127.0.0.1:1234'
    assert peer.alias is None
    assert peer.relay_address is None
    assert peer.last_seen == clock.time


def test_register_with_relay_address() -> None:
    registry = PeerRegistry()
    peer_id = registry.register(mock_websocket(), 'origin', ('1.2.3.4', 80))
    peer = registry.get(peer_id)
    assert peer is not None
    assert peer.relay_address == ('1.2.3.4', 80)


def test_operations_on_missing_peer_are_noops() -> None:
    registry = PeerRegistry()
    registry.touch('missing')
    registry.set_alias('missing', 'alias')
    registry.set_relay_address('missing', ('localhost', 1))
    assert registry.get('missing') is None
    assert registry.remove('missing') is None
    assert len(registry) == 0


def test_touch_updates_last_seen() -> None:
    clock = FakeClock()
    registry = PeerRegistry(clock=clock)
    peer_id = registry.register(mock_websocket(), 'origin')

    clock.time += 5
    registry.touch(peer_id)

    peer = registry.get(peer_id)
    assert peer is not None
    assert peer.last_seen == clock.time


def test_set_alias_and_relay_address() -> None:
    registry = PeerRegistry()
    peer_id = registry.register(mock_websocket(), 'origin')

    registry.set_alias(peer_id, 'alice')
    registry.set_relay_address(peer_id, ('localhost', 8000))

    peer = registry.get(peer_id)
    assert peer is not None
    assert peer.identified
    assert peer.alias == 'alice'
    assert peer.relay_address == ('localhost', 8000)

    registry.set_alias(peer_id, 'bob')
    peer = registry.get(peer_id)
    assert peer is not None
    assert peer.alias == 'bob'


def test_remove_returns_record_once() -> None:
    registry = PeerRegistry()
    peer_id = registry.register(mock_websocket(), 'origin')

    removed = registry.remove(peer_id)
    assert removed is not None
    assert removed.peer_id == peer_id
    assert registry.remove(peer_id) is None
    assert peer_id not in registry
    assert registry.list() == []


def test_list_is_snapshot() -> None:
    registry = PeerRegistry()
    first = registry.register(mock_websocket(), 'origin')
    second = registry.register(mock_websocket(), 'origin')

    snapshot = registry.list()
    assert [peer.peer_id for peer in snapshot] == [first, second]

    registry.set_alias(first, 'alice')
    registry.remove(second)
    registry.register(mock_websocket(), 'origin')

    assert [peer.peer_id for peer in snapshot] == [first, second]
    assert snapshot[0].alias is None

    # Modifying the snapshot does not modify the registry
    snapshot[0].alias = 'mallory'
    peer = registry.get(first)
    assert peer is not None
    assert peer.alias == 'alice'


def test_list_idle_before() -> None:
    clock = FakeClock(start=0)
    registry = PeerRegistry(clock=clock)
    old = registry.register(mock_websocket(), 'origin')
    clock.time = 10
    new = registry.register(mock_websocket(), 'origin')

    assert registry.list_idle_before(0) == []
    assert registry.list_idle_before(5) == [old]
    assert set(registry.list_idle_before(11)) == {old, new}

    clock.time = 20
    registry.touch(old)
    assert registry.list_idle_before(15) == [new]


def test_concurrent_registration_unique_ids() -> None:
    registry = PeerRegistry()
    websocket = mock_websocket()
    ids: list[str] = []
    ids_lock = threading.Lock()

    def _register() -> None:
        for _ in range(200):
            peer_id = registry.register(websocket, 'origin')
            with ids_lock:
                ids.append(peer_id)
            registry.touch(peer_id)

    threads = [threading.Thread(target=_register) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(ids) == len(set(ids)) == 1600
    assert len(registry) == 1600
    assert len({peer.peer_id for peer in registry.list()}) == 1600


def test_concurrent_remove_and_list() -> None:
    registry = PeerRegistry()
    websocket = mock_websocket()
    ids = [registry.register(websocket, 'origin') for _ in range(500)]
    removed: list[str] = []

    def _remove() -> None:
        for peer_id in ids:
            if registry.remove(peer_id) is not None:
                removed.append(peer_id)

    thread = threading.Thread(target=_remove)
    thread.start()
    while thread.is_alive():
        snapshot = [peer.peer_id for peer in registry.list()]
        # No duplicates and removal happens in order so every snapshot
        # is a suffix of the original registration order
        assert len(snapshot) == len(set(snapshot))
        assert snapshot == ids[len(ids) - len(snapshot) :]
    thread.join()

    assert sorted(removed) == sorted(ids)
    assert len(registry) == 0
