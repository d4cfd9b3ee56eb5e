"""Relay server for introducing peers to each other."""
from __future__ import annotations

from peerlink.relay.registry import Peer
from peerlink.relay.registry import PeerRegistry
from peerlink.relay.server import RelayServer
