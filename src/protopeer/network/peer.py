"""Peer: request/response correlation over one transport.

A Peer owns exactly one transport. Outbound requests are tracked in a table
of pending entries keyed by request id, each with its own timeout timer.
Whichever of {matching response, timeout, peer close} happens first pops
the entry from the table; popping is the commit point, so every later
attempt to settle the same request is a no-op.

Inbound requests are surfaced to ``on_request`` handlers together with
``accept`` and ``reject`` coroutine functions which write the response back
through the transport whenever the handler decides.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from .._utils import notify, register
from ._abc import CloseHandler, ITransport, RequestHandler
from .exceptions import (
    PeerClosed,
    RemoteError,
    RequestTimeout,
    ResponseAlreadySent,
    UnmatchedResponse,
)
from .message import (
    RequestFrame,
    ResponseFrame,
    build_error_response,
    build_request,
    build_success_response,
    parse_frame,
)
from .sentinels import PeerState

logger = logging.getLogger(__name__)

# Max time waiting for a response, in seconds.
REQUEST_TIMEOUT = 10.0


@dataclass
class PendingRequest:
    """Bookkeeping for one outstanding outbound request."""

    request: RequestFrame
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None

    def settle(self, data: Any = None, error: BaseException | None = None) -> None:
        """Cancel the timer and complete the future, unless the caller gave up on it."""
        if self.timer is not None:
            self.timer.cancel()
        if self.future.done():
            return
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(data)


class InboundRequest:
    """Single-use response handles for a request received from the remote peer."""

    def __init__(self, peer: Peer, request: RequestFrame) -> None:
        self._peer = peer
        self.request = request
        self._responded = False

    @property
    def responded(self) -> bool:
        """Whether accept() or reject() has already been called."""
        return self._responded

    async def accept(self, data: Any = None) -> None:
        """Answer the request successfully with ``data``."""
        await self._respond(build_success_response(self.request, data))

    async def reject(self, reason: str, code: int = 500) -> None:
        """Answer the request with an error."""
        await self._respond(build_error_response(self.request, reason, code))

    async def _respond(self, response: ResponseFrame) -> None:
        if self._responded:
            raise ResponseAlreadySent(self.request.id)
        self._responded = True
        await self._peer.transport.send(response.to_dict())


class Peer:
    """One endpoint of a request/response session bound to one transport."""

    def __init__(
        self,
        peer_id: str,
        transport: ITransport,
        request_timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        """Initialize a Peer over an already connected transport.

        Args:
            peer_id: Caller-assigned identifier for this peer.
            transport: The duplex channel; the peer takes ownership of it.
            request_timeout: Seconds to wait for a response before giving up.
        """
        logger.debug(f"Peer({peer_id!r})")
        self._id = peer_id
        self._transport = transport
        self._request_timeout = request_timeout
        self._state = PeerState.OPEN

        # Sent requests' handlers indexed by request id
        self._pending: dict[str, PendingRequest] = {}

        self._request_handlers: list[RequestHandler] = []
        self._close_handlers: list[CloseHandler] = []

        transport.on_message(self._handle_message)
        transport.on_close(self._handle_transport_close)
        if transport.closed:
            self._close(close_transport=False)

    def __repr__(self) -> str:
        return f"Peer(id={self._id!r}, state={self._state!r}, pending={len(self._pending)})"

    @property
    def id(self) -> str:
        """Get the peer's identifier."""
        return self._id

    @property
    def closed(self) -> bool:
        """Whether the peer has been closed."""
        return self._state is PeerState.CLOSED

    @property
    def state(self) -> PeerState:
        return self._state

    @property
    def transport(self) -> ITransport:
        return self._transport

    @property
    def request_timeout(self) -> float:
        return self._request_timeout

    @property
    def pending_count(self) -> int:
        """Number of outbound requests still waiting for a response."""
        return len(self._pending)

    def on_request(self, handler: RequestHandler) -> RequestHandler:
        """Register a handler for inbound requests.

        The handler is called with ``(request, accept, reject)``. It may be a
        plain function or a coroutine function, and may answer later.

        Examples:
            @peer.on_request
            async def handle(request, accept, reject):
                if request.method == "ping":
                    await accept("pong")
                else:
                    await reject("method not found", 404)
        """
        return register(self._request_handlers, handler)

    def on_close(self, handler: CloseHandler) -> CloseHandler:
        """Register a handler called once when the peer closes."""
        return register(self._close_handlers, handler)

    async def send(self, method: str, data: Any = None, timeout: float | None = None) -> Any:
        """Send a request and wait for the remote peer's answer.

        Args:
            method: Name of the remote operation.
            data: Request payload.
            timeout: Overrides the peer's request timeout for this request.

        Returns:
            The data of the success response.

        Raises:
            PeerClosed: The peer is closed, or closed while waiting.
            RemoteError: The remote peer rejected the request.
            RequestTimeout: No response arrived in time.
        """
        if self.closed:
            raise PeerClosed(self._id)

        timeout = self._request_timeout if timeout is None else timeout
        request = build_request(method, data)
        loop = asyncio.get_running_loop()
        pending = PendingRequest(request=request, future=loop.create_future())
        self._pending[request.id] = pending
        pending.timer = loop.call_later(timeout, self._handle_timeout, request, timeout)

        logger.debug(f"send() [method:{method}, id:{request.id}]")
        write = asyncio.ensure_future(self._transport.send(request.to_dict()))
        try:
            await asyncio.wait({write, pending.future}, return_when=asyncio.FIRST_COMPLETED)
            if not write.done():
                # Timed out or closed while the frame was still being written
                write.cancel()
            elif not write.cancelled() and write.exception() is not None:
                e = write.exception()
                logger.debug(f"Transport failed sending request {request.id}: {e}")
                self._settle(request.id, error=e)
            return await pending.future
        except asyncio.CancelledError:
            write.cancel()
            self._discard(request.id)
            raise

    def close(self) -> None:
        """Close the peer, its transport, and reject outstanding requests."""
        logger.debug(f"close() [peer:{self._id}]")
        self._close(close_transport=True)

    async def __aenter__(self) -> Peer:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _close(self, close_transport: bool) -> None:
        if self._state is PeerState.CLOSED:
            return

        self._state = PeerState.CLOSED

        if close_transport:
            self._transport.close()

        for request_id in list(self._pending):
            self._settle(request_id, error=PeerClosed(self._id))

        notify(self._close_handlers, event="close")

    def _settle(
        self, request_id: str, data: Any = None, error: BaseException | None = None
    ) -> bool:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return False
        pending.settle(data, error)
        return True

    def _discard(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            if pending.timer is not None:
                pending.timer.cancel()
            pending.future.cancel()

    def _handle_timeout(self, request: RequestFrame, timeout: float) -> None:
        if self._settle(request.id, error=RequestTimeout(request.method, timeout)):
            logger.debug(f"Request {request.id} ({request.method}) timed out")

    def _handle_transport_close(self) -> None:
        if self.closed:
            return
        logger.debug(f"Transport closed [peer:{self._id}]")
        self._close(close_transport=False)

    def _handle_message(self, payload: dict[str, Any]) -> None:
        if self.closed:
            return

        frame = parse_frame(payload)
        if isinstance(frame, ResponseFrame):
            self._handle_response(frame)
        elif isinstance(frame, RequestFrame):
            self._handle_request(frame)
        else:
            logger.debug(f"Ignoring frame that is neither request nor response: {payload!r}")

    def _handle_response(self, response: ResponseFrame) -> None:
        if response.ok:
            matched = self._settle(response.id, data=response.data)
        else:
            error = RemoteError(response.error_reason, response.error_code)
            matched = self._settle(response.id, error=error)

        if not matched:
            logger.warning(str(UnmatchedResponse(response.id)))

    def _handle_request(self, request: RequestFrame) -> None:
        if not self._request_handlers:
            logger.warning(
                f"No request handler on peer {self._id!r}, "
                f"leaving {request.method!r} ({request.id}) unanswered"
            )
            return

        inbound = InboundRequest(self, request)
        notify(
            self._request_handlers,
            request,
            inbound.accept,
            inbound.reject,
            event="request",
        )
