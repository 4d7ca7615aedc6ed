"""In-memory transport connecting two peers inside one event loop."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from ._abc import AbstractTransport
from .exceptions import TransportError

logger = logging.getLogger(__name__)


class LocalTransport(AbstractTransport):
    """One end of an in-memory duplex channel.

    Frames are JSON encoded on send and decoded on delivery, so payloads
    behave exactly as they would over a WebSocket. Delivery happens on a
    later loop iteration, in the order frames were sent.
    """

    def __init__(self, name: str = "local") -> None:
        super().__init__()
        self.name = name
        self._remote: LocalTransport | None = None

    def __repr__(self) -> str:
        return f"LocalTransport(name={self.name!r}, closed={self._closed})"

    @classmethod
    def pair(cls, names: tuple[str, str] = ("a", "b")) -> tuple[LocalTransport, LocalTransport]:
        """Create two transports wired to each other."""
        left, right = cls(names[0]), cls(names[1])
        left._remote = right
        right._remote = left
        return left, right

    async def send(self, frame: dict[str, Any]) -> None:
        """Encode ``frame`` and schedule its delivery to the other end."""
        if self._closed or self._remote is None:
            raise TransportError(f"{self.name}: transport closed")
        encoded = json.dumps(frame)
        asyncio.get_running_loop().call_soon(self._remote._deliver, encoded)

    def _deliver(self, encoded: str) -> None:
        if self._closed:
            logger.debug(f"{self.name}: dropping frame delivered after close")
            return
        self._emit_message(json.loads(encoded))

    def close(self) -> None:
        """Close both ends of the channel."""
        if self._closed:
            return
        logger.debug(f"{self.name}: close()")
        self._closed = True
        remote = self._remote
        self._emit_close()
        if remote is not None and not remote.closed:
            remote._closed = True
            remote._emit_close()
