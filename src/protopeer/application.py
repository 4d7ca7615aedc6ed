"""The application the user is provided with.

An Application aggregates WebSocket listeners, keeps the registry of
connected peers, routes their inbound requests by method name and exposes a
single error channel.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import uuid4

from ._utils import register
from .network.exceptions import ConnectionRejected, ResponseAlreadySent, TransportError
from .network.message import RequestFrame
from .network.peer import REQUEST_TIMEOUT, Peer
from .network.registry import PeerHandler, PeerRegistry
from .network.server import ConnectingHandler, ConnectingInfo, WebSocketServer

logger = logging.getLogger(__name__)

MethodHandler = Callable[..., Awaitable[None] | None]
ErrorHandler = Callable[[BaseException], Any]


class Application:
    """Entry point for serving peers over one or more WebSocket listeners."""

    def __init__(self, request_timeout: float = REQUEST_TIMEOUT) -> None:
        """Initialize a new Application.

        Args:
            request_timeout: Seconds each accepted peer waits for a response.
        """
        self.request_timeout = request_timeout
        self.registry = PeerRegistry()
        self.servers: list[WebSocketServer] = []

        self._connecting_handler: ConnectingHandler | None = None
        self._methods: dict[str, MethodHandler] = {}
        self._error_handlers: list[ErrorHandler] = []

        self.registry.on_online(self._handle_peer_online)

    @property
    def peers(self) -> list[Peer]:
        return self.registry.peers

    def handle_websocket(self, host: str = "0.0.0.0", port: int = 0, path: str = "/") -> WebSocketServer:
        """Add a WebSocket listener; it starts with ``start()``."""
        server = WebSocketServer(self, host=host, port=port, path=path)
        self.servers.append(server)
        return server

    async def start(self) -> None:
        """Start every listener."""
        for server in self.servers:
            await server.start()

    async def close(self, close_servers: bool = False) -> None:
        """Disconnect all the peers and stop every listener.

        Args:
            close_servers: Close the listeners for good instead of just
                stopping them; stopped listeners resume with ``start()``.
        """
        logger.debug(f"close() [close_servers:{close_servers}]")
        self.registry.close()
        for server in self.servers:
            await server.stop(close=close_servers)

    async def __aenter__(self) -> Application:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close(close_servers=True)

    def on_connecting(self, handler: ConnectingHandler) -> ConnectingHandler:
        """Set the hook deciding whether a connection attempt is admitted.

        The hook receives a ``ConnectingInfo`` and returns the peer id to use
        (None keeps the default). Raise ``ConnectionRejected`` to refuse.
        """
        self._connecting_handler = handler
        return handler

    def on_peer_online(self, handler: PeerHandler) -> PeerHandler:
        return self.registry.on_online(handler)

    def on_peer_offline(self, handler: PeerHandler) -> PeerHandler:
        return self.registry.on_offline(handler)

    def on_request(
        self, method: str | MethodHandler, handler: MethodHandler | None = None
    ) -> MethodHandler | Callable[[MethodHandler], MethodHandler]:
        """Register the handler answering requests for ``method``.

        Handlers are called with ``(peer, request, accept, reject)``. Can be
        used as a decorator or a regular function.

        Examples:
            @app.on_request("ping")
            async def ping(peer, request, accept, reject):
                await accept("pong")

            # Without arguments, the function name is the method
            @app.on_request
            async def echo(peer, request, accept, reject):
                await accept(request.data)
        """
        if isinstance(method, str) and handler is not None:
            self._methods[method] = handler
            return handler

        if callable(method) and handler is None:
            self._methods[method.__name__] = method
            return method

        if isinstance(method, str) and handler is None:

            def decorator(func: MethodHandler) -> MethodHandler:
                self._methods[method] = func
                return func

            return decorator

        raise ValueError(
            "Invalid arguments to on_request. "
            "Use @app.on_request, @app.on_request('method'), or app.on_request('method', handler)"
        )

    def on_error(self, handler: ErrorHandler) -> ErrorHandler:
        """Register a handler for usage or internal errors."""
        return register(self._error_handlers, handler)

    def error(self, error: BaseException) -> None:
        """Deliver ``error`` to the error handlers, or raise it if there are none."""
        if not self._error_handlers:
            logger.debug('no "error" handler, raising error')
            raise error

        logger.debug(f'emitting "error" event: {error!r}')
        for handler in list(self._error_handlers):
            handler(error)

    async def admit(self, info: ConnectingInfo) -> str:
        """Decide the peer id of a connection attempt.

        Raises:
            ConnectionRejected: If the connecting hook refuses the connection.
        """
        default_id = info.peer_id or str(uuid4())
        if self._connecting_handler is None:
            return default_id

        try:
            result = self._connecting_handler(info)
            if inspect.isawaitable(result):
                result = await result
        except ConnectionRejected:
            raise
        except Exception as e:
            self.error(e)
            raise ConnectionRejected(500, "Internal Server Error") from e
        return result or default_id

    def _handle_peer_online(self, peer: Peer) -> None:
        async def route(request: RequestFrame, accept, reject) -> None:
            await self._route_request(peer, request, accept, reject)

        peer.on_request(route)

    async def _route_request(self, peer: Peer, request: RequestFrame, accept, reject) -> None:
        handler = self._methods.get(request.method)
        if handler is None:
            logger.info(f"Peer {peer.id!r} requested unknown method {request.method!r}")
            await reject("method not found", 404)
            return

        try:
            result = handler(peer, request, accept, reject)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error in request handler for {request.method!r}: {e}", exc_info=True)
            try:
                await reject(str(e) or type(e).__name__, 500)
            except (ResponseAlreadySent, TransportError) as reject_error:
                logger.debug(f"Could not reject {request.id}: {reject_error}")
            self.error(e)
