"""
WebSocket client transport (RFC 6455) with permessage-deflate.

Used by the CDP adapter to talk to Chrome's DevTools endpoints.
"""

from transport.compression import CompressionConfig, DeflateCompressor
from transport.connection import Client, Connection, connect
from transport.errors import (
    BadOpcodeError,
    BadUriError,
    CloseError,
    ConnectionClosedError,
    ConnectionFailureError,
    ConnectionTimeoutError,
    HandshakeError,
    ReconnectRequired,
    WebSocketError,
)
from transport.frames import Frame, FrameCodec, apply_mask
from transport.messages import Message, MessageHandler

__all__ = [
    "BadOpcodeError",
    "BadUriError",
    "Client",
    "CloseError",
    "CompressionConfig",
    "Connection",
    "ConnectionClosedError",
    "ConnectionFailureError",
    "ConnectionTimeoutError",
    "DeflateCompressor",
    "Frame",
    "FrameCodec",
    "HandshakeError",
    "Message",
    "MessageHandler",
    "ReconnectRequired",
    "WebSocketError",
    "apply_mask",
    "connect",
]
