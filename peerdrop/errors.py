"""Errors raised inside the node.

None of these reach an API caller: discovery and relay code catch them at
the I/O edge and log them.
"""


class PeerDropError(Exception):
    """Base class for node errors."""


class NetworkUnreachable(PeerDropError):
    """A probe or forward to another node failed or timed out."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"{address} unreachable: {reason}")
        self.address = address
        self.reason = reason


class MalformedMessage(PeerDropError):
    """A datagram or client message could not be parsed."""
