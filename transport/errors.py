"""
Transport exceptions.

Low-level failures raised by the WebSocket layer. The CDP adapter and the
render tool translate these into the RenderError taxonomy in models.py.
"""

from typing import Any


class WebSocketError(Exception):
    """Base class for all transport failures."""


class BadUriError(WebSocketError):
    """URI is not a usable ws:// or wss:// address."""


class BadOpcodeError(WebSocketError):
    """Frame or message carried an opcode we don't know."""


class ConnectionFailureError(WebSocketError):
    """Socket could not be opened or was used after close."""


class ConnectionClosedError(WebSocketError):
    """Peer went away mid-read."""


class ConnectionTimeoutError(WebSocketError, TimeoutError):
    """A socket read or write exceeded the connection timeout."""


class CloseError(WebSocketError):
    """Protocol violation that must fail the connection with a close status."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status


class HandshakeError(WebSocketError):
    """HTTP upgrade was refused or answered incorrectly."""

    def __init__(self, message: str, response: Any = None):
        super().__init__(message)
        self.response = response


class ReconnectRequired(WebSocketError):
    """Raised by middleware to make the client reconnect to another URI."""

    def __init__(self, uri: str):
        super().__init__(f"Reconnect to {uri}")
        self.uri = uri
