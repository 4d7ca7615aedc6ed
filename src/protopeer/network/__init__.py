"""Network module for peer-to-peer request/response messaging.

This module provides the Peer class, the request/response frames it
exchanges, and the transports it can run over.
"""

from ._local import LocalTransport
from ._websocket import WebSocketTransport, connect
from .exceptions import (
    ConnectionRejected,
    PeerClosed,
    PeerError,
    RemoteError,
    RequestTimeout,
    ResponseAlreadySent,
    TransportError,
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
from .peer import REQUEST_TIMEOUT, Peer
from .registry import PeerRegistry
from .sentinels import PeerState
from .server import ConnectingInfo, WebSocketServer

__all__ = [
    "Peer",
    "PeerState",
    "PeerRegistry",
    "REQUEST_TIMEOUT",
    "RequestFrame",
    "ResponseFrame",
    "build_request",
    "build_success_response",
    "build_error_response",
    "parse_frame",
    "LocalTransport",
    "WebSocketTransport",
    "WebSocketServer",
    "ConnectingInfo",
    "connect",
    "PeerError",
    "PeerClosed",
    "RemoteError",
    "RequestTimeout",
    "ResponseAlreadySent",
    "TransportError",
    "UnmatchedResponse",
    "ConnectionRejected",
]
