"""Sentinel values used throughout the network module."""

from enum import Enum


class PeerState(Enum):
    """
    Represents the lifecycle state of a peer.

    The only transition is OPEN -> CLOSED; a closed peer never reopens.
    """

    OPEN = "open"
    CLOSED = "closed"

    def __repr__(self) -> str:
        return f"<PeerState.{self.name}>"

    def __bool__(self) -> bool:
        return self is PeerState.OPEN

    @property
    def is_open(self) -> bool:
        """Return True if the peer can still send requests."""
        return self is PeerState.OPEN

    @property
    def is_closed(self) -> bool:
        """Return True if the peer has been closed."""
        return self is PeerState.CLOSED
