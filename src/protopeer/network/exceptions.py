"""Error kinds raised by peers, transports and servers."""

from __future__ import annotations


class PeerError(Exception):
    """Base class for every error raised by the network layer."""


class PeerClosed(PeerError):
    """Raise when a request is issued on, or outstanding at, a closed peer."""

    def __init__(self, peer_id: str | None = None):
        self.peer_id = peer_id
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.peer_id is None:
            return "peer closed"
        return f"peer {self.peer_id!r} closed"


class RequestTimeout(PeerError, TimeoutError):
    """Raise when no response arrives within the configured window."""

    def __init__(self, method: str, timeout: float):
        self.method = method
        self.timeout = timeout
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"request timeout: {self.method!r} got no response within {self.timeout}s"


class RemoteError(PeerError):
    """The remote peer explicitly rejected a request."""

    def __init__(self, reason: str, code: int):
        self.reason = reason
        self.code = code
        super().__init__(reason, code)

    def __str__(self) -> str:
        return f"{self.reason} ({self.code})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoteError):
            return NotImplemented
        return (self.reason, self.code) == (other.reason, other.code)

    def __hash__(self) -> int:
        return hash((self.reason, self.code))


class UnmatchedResponse(PeerError):
    """A response arrived for a request id that is not pending (stale or duplicate)."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"received response does not match any sent request (id={self.request_id!r})"


class ResponseAlreadySent(PeerError):
    """Raise when an inbound request is accepted or rejected a second time."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"request {self.request_id!r} has already been answered"


class TransportError(PeerError):
    """The underlying transport cannot carry the frame."""


class ConnectionRejected(PeerError):
    """Raise from a connecting hook to refuse an incoming connection."""

    def __init__(self, code: int = 403, reason: str = "Forbidden"):
        self.code = code
        self.reason = reason
        super().__init__(code, reason)

    def __str__(self) -> str:
        return f"connection rejected: {self.reason} ({self.code})"
