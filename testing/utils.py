"""Fixtures and utilities for testing."""
from __future__ import annotations

import socket


def open_port() -> int:
    """Return an open port on localhost.

    Source: https://stackoverflow.com/questions/2838244
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('', 0))
        return s.getsockname()[1]


class FakeClock:
    """Manually advanced clock for a `PeerRegistry`."""

    def __init__(self, start: float = 1000.0) -> None:
        self.time = start

    def __call__(self) -> float:
        return self.time
