"""Request and response frames exchanged between peers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4


@dataclass
class RequestFrame:
    """A request sent to the remote peer.

    Attributes:
        method: The name of the remote operation (e.g., 'ping')
        data: The request payload, anything JSON can carry
        id: Token correlating the request with its response
    """

    method: str
    data: Any = None
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict[str, Any]:
        """Convert the frame to a dictionary for serialization."""
        return {
            "id": self.id,
            "request": True,
            "method": self.method,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequestFrame:
        """Create a request frame from a dictionary."""
        return cls(method=data["method"], data=data.get("data"), id=data["id"])


@dataclass
class ResponseFrame:
    """A response to a previously received request.

    Attributes:
        id: The id of the originating request
        ok: Whether the request was accepted
        data: The response payload (accepted requests only)
        error_reason: Why the request was rejected
        error_code: Numeric rejection cause
    """

    id: str
    ok: bool
    data: Any = None
    error_reason: str | None = None
    error_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the frame to a dictionary for serialization."""
        if self.ok:
            return {"id": self.id, "response": True, "ok": True, "data": self.data}
        return {
            "id": self.id,
            "response": True,
            "ok": False,
            "errorReason": self.error_reason,
            "errorCode": self.error_code,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResponseFrame:
        """Create a response frame from a dictionary."""
        ok = bool(data.get("ok"))
        if ok:
            return cls(id=data["id"], ok=True, data=data.get("data"))
        return cls(
            id=data["id"],
            ok=False,
            error_reason=data.get("errorReason") or "",
            error_code=500 if data.get("errorCode") is None else data["errorCode"],
        )


Frame = RequestFrame | ResponseFrame


def build_request(method: str, data: Any = None) -> RequestFrame:
    """Wrap ``method`` and ``data`` in a request frame with a fresh id."""
    return RequestFrame(method=method, data=data)


def build_success_response(request: RequestFrame, data: Any = None) -> ResponseFrame:
    """Build the response accepting ``request``."""
    return ResponseFrame(id=request.id, ok=True, data=data)


def build_error_response(
    request: RequestFrame, reason: str, code: int = 500
) -> ResponseFrame:
    """Build the response rejecting ``request``."""
    return ResponseFrame(id=request.id, ok=False, error_reason=reason, error_code=code)


def parse_frame(payload: Any) -> Frame | None:
    """Decode a wire dictionary into a frame.

    Returns None for anything that is neither a response nor a well-formed
    request, so callers can drop it.
    """
    if not isinstance(payload, dict) or payload.get("id") is None:
        return None
    if payload.get("response"):
        return ResponseFrame.from_dict(payload)
    if payload.get("request") and isinstance(payload.get("method"), str):
        return RequestFrame.from_dict(payload)
    return None
