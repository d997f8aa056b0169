"""
WebSocket client and connection.

Client.connect() opens the socket, runs the opening handshake through the
middleware chain (following redirects) and returns a Connection. The
Connection sends and receives whole messages; ping/pong traffic is
answered by middleware and never handed to callers.
"""

import logging
import zlib
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Sequence

from transport.compression import CompressionConfig, DeflateCompressor
from transport.errors import (
    CloseError,
    ConnectionFailureError,
    ReconnectRequired,
    WebSocketError,
)
from transport.frames import FrameCodec
from transport.handshake import (
    HttpHandler,
    HttpRequest,
    HttpResponse,
    build_request,
    generate_key,
    parse_uri,
    socket_address,
    validate_response,
)
from transport.messages import DEFAULT_FRAME_SIZE, Message, MessageHandler
from transport.middleware import (
    COMPRESSION_META,
    CloseHandler,
    CompressionExtension,
    FollowRedirect,
    Middleware,
    MiddlewareHandler,
    PingResponder,
)
from transport.stream import SocketStream

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60

# Redirects followed during one connect() before giving up
MAX_REDIRECTS = 10


class Connection:
    """
    One open WebSocket connection.

    Args:
        stream: Connected socket stream
        uri: The URI this connection was opened for
        frame_size: Maximum payload per outgoing frame
        push_masked: Mask outgoing frames (client role)
        pull_masked_required: Reject unmasked incoming frames (server role)
    """

    def __init__(
        self,
        stream: SocketStream,
        uri: str,
        *,
        frame_size: int = DEFAULT_FRAME_SIZE,
        push_masked: bool = True,
        pull_masked_required: bool = False,
    ):
        self.uri = uri
        self.frame_size = frame_size
        self.meta: dict[str, Any] = {}
        self.handshake_request: HttpRequest | None = None
        self.handshake_response: HttpResponse | None = None
        self._stream = stream
        self._middleware = MiddlewareHandler(
            MessageHandler(FrameCodec(push_masked, pull_masked_required), stream),
            HttpHandler(stream),
        )

    def __str__(self) -> str:
        return f"Connection({self._stream.local_name} -> {self._stream.remote_name})"

    def add_middleware(self, middleware: Middleware) -> None:
        self._middleware.add(middleware)
        log.debug(f"Added middleware {middleware}")

    @property
    def is_connected(self) -> bool:
        return self._stream.is_connected

    @property
    def is_readable(self) -> bool:
        return self._stream.is_readable

    @property
    def is_writable(self) -> bool:
        return self._stream.is_writable

    @property
    def compression(self) -> CompressionConfig | None:
        """Negotiated permessage-deflate parameters, if any."""
        negotiated = self.meta.get(COMPRESSION_META)
        return negotiated[1] if negotiated else None

    def close_read(self) -> None:
        self._stream.close_read()

    def close_write(self) -> None:
        self._stream.close_write()

    async def disconnect(self) -> None:
        if self._stream.is_connected:
            log.debug(f"Disconnecting {self}")
        await self._stream.close()

    # -- HTTP (handshake) -------------------------------------------------

    async def push_http(self, request: HttpRequest) -> HttpRequest:
        return await self._middleware.process_http_outgoing(self, request)

    async def pull_http(self) -> HttpResponse:
        return await self._middleware.process_http_incoming(self)

    # -- Messages -----------------------------------------------------------

    async def send(self, message: Message) -> Message:
        """Push a message through the middleware chain."""
        if not self.is_writable:
            raise ConnectionFailureError(f"Cannot send {message}: connection is closed")
        try:
            return await self._middleware.process_outgoing(self, message)
        except WebSocketError as e:
            log.error(f"Send failed on {self}: {e}")
            raise
        except (OSError, zlib.error) as e:
            log.error(f"Send failed on {self}: {e}")
            raise ConnectionFailureError(str(e)) from e

    async def send_text(self, content: str) -> Message:
        return await self.send(Message.text(content))

    async def receive(self) -> Message:
        """
        Next text, binary or close message.

        Pings are answered and pongs dropped before returning. A close
        from the peer is acknowledged by middleware and then returned.
        """
        while True:
            if not self.is_readable:
                raise ConnectionFailureError(f"Cannot receive on {self}: connection is closed")
            try:
                message = await self._middleware.process_incoming(self)
            except CloseError as e:
                log.error(f"Failing connection {self}: {e}")
                await self._fail(e.status, str(e))
                raise
            except WebSocketError as e:
                log.error(f"Receive failed on {self}: {e}")
                raise
            except (OSError, zlib.error) as e:
                log.error(f"Receive failed on {self}: {e}")
                raise ConnectionFailureError(str(e)) from e
            if message.opcode in ("ping", "pong"):
                continue
            return message

    async def close(self, status: int = 1000, reason: str = "ttfn") -> None:
        """
        Run the closing handshake: send Close, wait for the acknowledgement.

        The socket is released even when the peer never acknowledges;
        the underlying error is re-raised in that case.
        """
        if not self.is_writable:
            await self.disconnect()
            return
        try:
            await self.send(Message.close(status, reason))
            while self.is_connected and self.is_readable:
                message = await self.receive()
                if message.opcode == "close":
                    break
        finally:
            await self.disconnect()

    async def _fail(self, status: int, reason: str) -> None:
        if self.is_writable:
            try:
                await self._middleware.process_outgoing(self, Message.close(status, reason))
            except WebSocketError as e:
                log.debug(f"Could not send close {status}: {e}")
        await self.disconnect()

    async def __aenter__(self) -> "Connection":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()


class Client:
    """
    WebSocket client.

    Args:
        uri: ws:// or wss:// address, optionally with user:password@
        timeout: Seconds allowed for connect and for each socket read/write
        frame_size: Maximum payload per outgoing frame
        compression: Offer permessage-deflate with these settings
        headers: Extra handshake headers
        max_redirects: 3xx responses followed before giving up
        middlewares: Extra middlewares appended after the built-in ones
    """

    def __init__(
        self,
        uri: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        frame_size: int = DEFAULT_FRAME_SIZE,
        compression: DeflateCompressor | None = None,
        headers: dict[str, str] | None = None,
        max_redirects: int = MAX_REDIRECTS,
        middlewares: Sequence[Middleware] = (),
    ):
        parse_uri(uri)
        self.uri = uri
        self.timeout = timeout
        self.frame_size = frame_size
        self.compression = compression
        self.headers = dict(headers or {})
        self.max_redirects = max_redirects
        self.middlewares = list(middlewares)

    def __str__(self) -> str:
        return f"Client({self.uri})"

    async def connect(self) -> Connection:
        """
        Open a connection, following handshake redirects.

        Raises:
            BadUriError: URI (or a redirect target) is not ws:// or wss://
            ConnectionFailureError: Socket could not be opened
            ConnectionTimeoutError: Connect or handshake read timed out
            HandshakeError: Upgrade refused or Sec-WebSocket-Accept mismatch
        """
        uri = self.uri
        redirect = FollowRedirect(self.max_redirects)
        while True:
            url = parse_uri(uri)
            host, port = socket_address(url)
            stream = await SocketStream.open(
                host, port, secure=url.scheme == "wss", timeout=self.timeout,
            )
            connection = Connection(stream, uri, frame_size=self.frame_size)
            connection.add_middleware(CloseHandler())
            connection.add_middleware(PingResponder())
            connection.add_middleware(redirect)
            if self.compression:
                connection.add_middleware(CompressionExtension(self.compression))
            for middleware in self.middlewares:
                connection.add_middleware(middleware)

            try:
                key = generate_key()
                request = await connection.push_http(build_request(url, key, self.headers))
                response = await connection.pull_http()
                validate_response(response, key, uri)
            except ReconnectRequired as e:
                await connection.disconnect()
                log.info(f"Following redirect to {e.uri}")
                uri = e.uri
                continue
            except BaseException:
                await connection.disconnect()
                raise

            connection.handshake_request = request
            connection.handshake_response = response
            log.info(f"Client connected to {uri}")
            return connection


@asynccontextmanager
async def connect(uri: str, **kwargs) -> AsyncIterator[Connection]:
    """Connect, yield the connection, disconnect on exit."""
    connection = await Client(uri, **kwargs).connect()
    try:
        yield connection
    finally:
        await connection.disconnect()
