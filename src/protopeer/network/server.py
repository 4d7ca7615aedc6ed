"""WebSocket listener turning accepted connections into peers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import uuid4

from aiohttp import web

from ._websocket import WebSocketTransport
from .exceptions import ConnectionRejected
from .peer import Peer

if TYPE_CHECKING:
    from ..application import Application

logger = logging.getLogger(__name__)


@dataclass
class ConnectingInfo:
    """Information about a WebSocket connection attempt.

    Attributes:
        request: The HTTP request of the client handshake
        origin: The Origin header value (None if absent)
        peer_id: Peer id requested by the client through the ``peer_id`` query parameter
    """

    request: web.Request
    origin: str | None = None
    peer_id: str | None = None

    @classmethod
    def from_request(cls, request: web.Request) -> ConnectingInfo:
        return cls(
            request=request,
            origin=request.headers.get("Origin"),
            peer_id=request.query.get("peer_id") or None,
        )


ConnectingHandler = Callable[[ConnectingInfo], Awaitable[str | None] | str | None]


class WebSocketServer:
    """Accepts WebSocket connections for an Application."""

    def __init__(
        self,
        application: Application,
        host: str = "0.0.0.0",
        port: int = 0,
        path: str = "/",
    ) -> None:
        """Initialize a new WebSocketServer.

        Args:
            application: The application admitting connections and owning the peers.
            host: The host address to bind to (default: "0.0.0.0").
            port: The port to bind to (0 for auto-select).
            path: The HTTP path serving WebSocket upgrades.
        """
        self._application = application
        self.host = host
        self.port = port
        self.path = path
        self.app = web.Application()
        self.app.router.add_route("GET", path, self.handle_websocket)
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self.closed = False

    def __repr__(self) -> str:
        return f"WebSocketServer(host={self.host!r}, port={self.port}, path={self.path!r})"

    @property
    def is_running(self) -> bool:
        return self.site is not None

    @property
    def url(self) -> str:
        host = "127.0.0.1" if self.host in ("0.0.0.0", "") else self.host
        return f"ws://{host}:{self.port}{self.path}"

    async def start(self) -> None:
        """Start listening.

        A stopped server can be started again, a closed one cannot.
        """
        if self.closed:
            raise RuntimeError(f"{self!r} is closed")
        if self.is_running:
            return
        if self.runner is None:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        # Update port if auto-assigned
        for address in self.runner.addresses:
            if isinstance(address, tuple) and len(address) >= 2:
                self.port = address[1]
                break

        logger.info(f"WebSocket server listening on {self.url}")

    async def stop(self, close: bool = False) -> None:
        """Stop accepting connections.

        Args:
            close: Also clean up the aiohttp application, instead of just
                releasing the listening socket.
        """
        if self.site:
            await self.site.stop()
            self.site = None
        if not close:
            logger.info(f"WebSocket server on port {self.port} stopped")
            return
        self.closed = True
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info(f"WebSocket server on port {self.port} closed")

    async def handle_websocket(self, request: web.Request) -> web.StreamResponse:
        """Admit the connection and serve its peer until the socket closes."""
        info = ConnectingInfo.from_request(request)
        try:
            peer_id = await self._application.admit(info)
        except ConnectionRejected as e:
            logger.info(f"Rejected connection from {request.remote}: {e}")
            return web.Response(status=e.code, text=e.reason)
        except Exception:
            logger.error("Error admitting connection", exc_info=True)
            return web.Response(status=500, text="Internal Server Error")

        ws = web.WebSocketResponse()
        await ws.prepare(request)

        transport = WebSocketTransport(ws)
        peer = Peer(
            peer_id or str(uuid4()),
            transport,
            request_timeout=self._application.request_timeout,
        )
        self._application.registry.add(peer)
        await transport.run()
        return ws
