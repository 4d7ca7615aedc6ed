"""Abstract base classes for transports and peers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from .._utils import notify, register
from .message import RequestFrame

logger = logging.getLogger(__name__)

# Type aliases
MessageHandler = Callable[[dict[str, Any]], None]
CloseHandler = Callable[[], Any]
Accept = Callable[..., Awaitable[None]]
Reject = Callable[..., Awaitable[None]]
RequestHandler = Callable[[RequestFrame, Accept, Reject], Any]


@runtime_checkable
class ITransport(Protocol):
    """Protocol defining a duplex channel carrying decoded frames.

    A transport emits exactly two notifications: one per incoming decoded
    message, and one (at most) when the channel closes.
    """

    @property
    def closed(self) -> bool:
        """Whether the channel has been closed."""
        ...

    async def send(self, frame: dict[str, Any]) -> None:
        """Write one frame to the remote side."""
        ...

    def close(self) -> None:
        """Close the channel."""
        ...

    def on_message(self, handler: MessageHandler) -> MessageHandler:
        """Register a handler for incoming decoded frames."""
        ...

    def on_close(self, handler: CloseHandler) -> CloseHandler:
        """Register a handler for channel closure."""
        ...


@runtime_checkable
class IPeer(Protocol):
    """Protocol defining the peer surface seen by registries and applications."""

    @property
    def id(self) -> str:
        """Get the peer's caller-assigned identifier."""
        ...

    @property
    def closed(self) -> bool:
        """Whether the peer has been closed."""
        ...

    async def send(self, method: str, data: Any = None, timeout: float | None = None) -> Any:
        """Send a request and wait for the response payload."""
        ...

    def close(self) -> None:
        """Close the peer and reject its outstanding requests."""
        ...

    def on_request(self, handler: RequestHandler) -> RequestHandler:
        """Register a handler for inbound requests."""
        ...

    def on_close(self, handler: CloseHandler) -> CloseHandler:
        """Register a handler for peer closure."""
        ...


class AbstractTransport(ABC):
    """Abstract base class for transport implementations.

    Handles handler registration and guarantees the close notification fires
    at most once. Subclasses implement ``send`` and ``close`` and call
    ``_emit_message`` / ``_emit_close`` as the channel reports events.
    """

    def __init__(self) -> None:
        self._closed = False
        self._close_emitted = False
        self._message_handlers: list[MessageHandler] = []
        self._close_handlers: list[CloseHandler] = []

    @property
    def closed(self) -> bool:
        """Whether the channel has been closed."""
        return self._closed

    @abstractmethod
    async def send(self, frame: dict[str, Any]) -> None:
        """Write one frame to the remote side."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the channel."""
        ...

    def on_message(self, handler: MessageHandler) -> MessageHandler:
        """Register a handler for incoming decoded frames."""
        return register(self._message_handlers, handler)

    def on_close(self, handler: CloseHandler) -> CloseHandler:
        """Register a handler for channel closure."""
        return register(self._close_handlers, handler)

    def _emit_message(self, frame: dict[str, Any]) -> None:
        if self._close_emitted:
            logger.debug("Dropping frame received after close")
            return
        notify(self._message_handlers, frame, event="message")

    def _emit_close(self) -> None:
        self._closed = True
        if self._close_emitted:
            return
        self._close_emitted = True
        notify(self._close_handlers, event="close")
