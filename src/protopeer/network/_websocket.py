"""aiohttp implementation of the transport interface."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp
from aiohttp import web

from .._utils import spawn
from ._abc import AbstractTransport
from .exceptions import TransportError
from .peer import REQUEST_TIMEOUT, Peer

logger = logging.getLogger(__name__)


class WebSocketTransport(AbstractTransport):
    """A transport carrying JSON frames over an aiohttp WebSocket.

    Works with both server side ``web.WebSocketResponse`` objects and client
    side ``aiohttp.ClientWebSocketResponse`` objects. Incoming frames are only
    read while ``run()`` is being awaited.
    """

    def __init__(
        self,
        ws: web.WebSocketResponse | aiohttp.ClientWebSocketResponse,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize a transport over an open WebSocket.

        Args:
            ws: The open WebSocket.
            session: Client session owning ``ws``; closed together with it.
        """
        super().__init__()
        self._ws = ws
        self._session = session
        self._reader: asyncio.Task | None = None
        self._shutdown_task: asyncio.Task | None = None

    @classmethod
    async def connect(cls, url: str, **kwargs: Any) -> WebSocketTransport:
        """Open a client connection to ``url`` and start reading from it.

        Args:
            url: The ws:// or wss:// address to connect to
            **kwargs: Passed through to ``ClientSession.ws_connect``

        Returns:
            WebSocketTransport: The connected transport
        """
        session = aiohttp.ClientSession()
        try:
            ws = await session.ws_connect(url, **kwargs)
        except Exception:
            await session.close()
            raise
        transport = cls(ws, session=session)
        transport._reader = spawn(transport.run(), name=f"ws-reader:{url}")
        return transport

    async def send(self, frame: dict[str, Any]) -> None:
        """Write ``frame`` as a JSON text message."""
        if self._closed or self._ws.closed:
            raise TransportError("websocket closed")
        try:
            await self._ws.send_json(frame)
        except ConnectionResetError as e:
            raise TransportError(f"websocket send failed: {e}") from e

    def close(self) -> None:
        """Close the WebSocket; the close notification follows once it is down."""
        if self._closed:
            return
        logger.debug("close()")
        self._closed = True
        self._shutdown_task = spawn(self._shutdown(), name="ws-shutdown")

    async def wait_closed(self) -> None:
        """Wait until the socket (and its client session) are fully closed."""
        tasks = [t for t in (self._shutdown_task, self._reader) if t is not None]
        if tasks:
            await asyncio.wait(tasks)

    async def _shutdown(self) -> None:
        try:
            await self._ws.close()
        finally:
            if self._session is not None:
                await self._session.close()
            # The reader may never have been started
            if self._reader is None:
                self._emit_close()

    async def run(self) -> None:
        """Read frames until the WebSocket closes, then emit close."""
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    logger.warning("Ignoring binary websocket message")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"Websocket connection error: {self._ws.exception()}")
                    break
        except asyncio.CancelledError:
            logger.debug("Receive loop cancelled")
            raise
        finally:
            if not self._ws.closed:
                await self._ws.close()
            if self._session is not None and not self._session.closed:
                await self._session.close()
            self._emit_close()

    def _handle_text(self, data: str) -> None:
        try:
            frame = json.loads(data)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode message as JSON: {e}")
            logger.debug(f"Raw message content: {data[:100]}")
            return
        if not isinstance(frame, dict):
            logger.warning(f"Ignoring non-object JSON message: {frame!r}")
            return
        self._emit_message(frame)


async def connect(
    url: str,
    peer_id: str | None = None,
    request_timeout: float = REQUEST_TIMEOUT,
    **kwargs: Any,
) -> Peer:
    """Connect to a WebSocket server and return the Peer for that connection.

    Args:
        url: Address of the server (e.g., "ws://127.0.0.1:8080/")
        peer_id: Identifier for the remote end; defaults to the url
        request_timeout: Seconds to wait for each response
        **kwargs: Passed through to ``ClientSession.ws_connect``
    """
    transport = await WebSocketTransport.connect(url, **kwargs)
    return Peer(peer_id or url, transport, request_timeout=request_timeout)
