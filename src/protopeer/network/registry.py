"""Registry of connected peers with online/offline notifications."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any

from .._utils import notify, register
from .exceptions import PeerClosed
from .peer import Peer

logger = logging.getLogger(__name__)

PeerHandler = Callable[[Peer], Any]


class PeerRegistry:
    """Tracks connected peers by id.

    A peer is online from ``add()`` until it closes. Registering a second peer
    under an id that is already taken closes the previous peer first.
    """

    def __init__(self) -> None:
        self._peers: dict[str, Peer] = {}
        self._online_handlers: list[PeerHandler] = []
        self._offline_handlers: list[PeerHandler] = []

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    def __iter__(self) -> Iterator[Peer]:
        return iter(list(self._peers.values()))

    @property
    def peers(self) -> list[Peer]:
        """Get the currently connected peers."""
        return list(self._peers.values())

    def get(self, peer_id: str) -> Peer | None:
        return self._peers.get(peer_id)

    def on_online(self, handler: PeerHandler) -> PeerHandler:
        """Register a handler called with each peer that comes online."""
        return register(self._online_handlers, handler)

    def on_offline(self, handler: PeerHandler) -> PeerHandler:
        """Register a handler called with each peer that goes offline."""
        return register(self._offline_handlers, handler)

    def add(self, peer: Peer) -> Peer:
        """Register a connected peer.

        Raises:
            PeerClosed: If the peer is already closed.
        """
        if peer.closed:
            raise PeerClosed(peer.id)

        existing = self._peers.get(peer.id)
        if existing is not None and existing is not peer:
            logger.info(f"Peer {peer.id!r} reconnected, closing previous connection")
            existing.close()
        elif existing is peer:
            return peer

        self._peers[peer.id] = peer
        peer.on_close(lambda: self._remove(peer))

        logger.info(f"Peer {peer.id!r} online")
        notify(self._online_handlers, peer, event="online")
        return peer

    def close(self) -> None:
        """Close every registered peer."""
        for peer in self.peers:
            peer.close()

    def _remove(self, peer: Peer) -> None:
        if self._peers.get(peer.id) is not peer:
            return
        del self._peers[peer.id]
        logger.info(f"Peer {peer.id!r} offline")
        notify(self._offline_handlers, peer, event="offline")
