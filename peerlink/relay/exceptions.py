"""Exception types raised by the relay server."""
from __future__ import annotations


class RelayServerError(Exception):
    """Base exception type for exceptions raised by relay server."""

    pass


class MessageError(RelayServerError):
    """Base exception type for relay messages."""

    pass


class EventDecodeError(MessageError):
    """Exception raised when a message from a peer cannot be decoded."""

    pass


class MessageEncodeError(MessageError):
    """Exception raised when a message cannot be encoded."""

    pass
