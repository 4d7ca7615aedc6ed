"""Peer-to-peer request/response messaging over persistent duplex transports."""

__version__ = "0.1.0"

from .application import Application
from .network import Peer, PeerRegistry, connect

__all__ = ["Application", "Peer", "PeerRegistry", "connect", "__version__"]
