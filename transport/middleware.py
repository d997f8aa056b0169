"""
Middleware chain.

Every message and every handshake HTTP message passes through an ordered
list of middlewares. Each middleware gets the stack and may act before
and/or after calling the next layer; the innermost layer is the message
(or HTTP) handler that touches the socket.

Shipped middlewares:
- CloseHandler: close handshake bookkeeping and acknowledgement
- PingResponder: answer pings with pongs
- FollowRedirect: turn 3xx handshake responses into reconnects
- CompressionExtension: permessage-deflate negotiation and (de)compression
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

import httpx

from transport.compression import DeflateCompressor, CompressionConfig
from transport.errors import HandshakeError, ReconnectRequired
from transport.handshake import HttpHandler, HttpRequest, HttpResponse
from transport.messages import Message, MessageHandler

if TYPE_CHECKING:
    from transport.connection import Connection

log = logging.getLogger(__name__)

COMPRESSION_META = "compression"


class Middleware:
    """Base middleware; every hook passes straight through."""

    async def process_incoming(self, stack: ProcessStack, connection: Connection) -> Message:
        return await stack.handle_incoming()

    async def process_outgoing(self, stack: ProcessStack, connection: Connection, message: Message) -> Message:
        return await stack.handle_outgoing(message)

    async def process_http_incoming(self, stack: ProcessHttpStack, connection: Connection) -> HttpResponse:
        return await stack.handle_http_incoming()

    async def process_http_outgoing(
        self, stack: ProcessHttpStack, connection: Connection, request: HttpRequest,
    ) -> HttpRequest:
        return await stack.handle_http_outgoing(request)

    def __str__(self) -> str:
        return type(self).__name__


class ProcessStack:
    """One pass of a message through the middlewares, outermost first."""

    def __init__(self, connection: Connection, handler: MessageHandler, middlewares: Sequence[Middleware]):
        self._connection = connection
        self._handler = handler
        self._middlewares = list(middlewares)

    async def handle_incoming(self) -> Message:
        if self._middlewares:
            middleware = self._middlewares.pop(0)
            return await middleware.process_incoming(self, self._connection)
        return await self._handler.pull()

    async def handle_outgoing(self, message: Message) -> Message:
        if self._middlewares:
            middleware = self._middlewares.pop(0)
            return await middleware.process_outgoing(self, self._connection, message)
        return await self._handler.push(message, self._connection.frame_size)


class ProcessHttpStack:
    """One pass of a handshake HTTP message through the middlewares."""

    def __init__(self, connection: Connection, handler: HttpHandler, middlewares: Sequence[Middleware]):
        self._connection = connection
        self._handler = handler
        self._middlewares = list(middlewares)

    async def handle_http_incoming(self) -> HttpResponse:
        if self._middlewares:
            middleware = self._middlewares.pop(0)
            return await middleware.process_http_incoming(self, self._connection)
        return await self._handler.pull()

    async def handle_http_outgoing(self, request: HttpRequest) -> HttpRequest:
        if self._middlewares:
            middleware = self._middlewares.pop(0)
            return await middleware.process_http_outgoing(self, self._connection, request)
        return await self._handler.push(request)


class MiddlewareHandler:
    """Owns the middleware list and builds a fresh stack per message."""

    def __init__(self, message_handler: MessageHandler, http_handler: HttpHandler):
        self._message_handler = message_handler
        self._http_handler = http_handler
        self._middlewares: list[Middleware] = []

    def add(self, middleware: Middleware) -> None:
        self._middlewares.append(middleware)

    @property
    def middlewares(self) -> list[Middleware]:
        return list(self._middlewares)

    async def process_incoming(self, connection: Connection) -> Message:
        return await ProcessStack(connection, self._message_handler, self._middlewares).handle_incoming()

    async def process_outgoing(self, connection: Connection, message: Message) -> Message:
        return await ProcessStack(connection, self._message_handler, self._middlewares).handle_outgoing(message)

    async def process_http_incoming(self, connection: Connection) -> HttpResponse:
        return await ProcessHttpStack(connection, self._http_handler, self._middlewares).handle_http_incoming()

    async def process_http_outgoing(self, connection: Connection, request: HttpRequest) -> HttpRequest:
        return await ProcessHttpStack(connection, self._http_handler, self._middlewares).handle_http_outgoing(request)


class CloseHandler(Middleware):
    """
    Close handshake.

    Remote Close while we can still write: stop reading, send the
    acknowledgement. Remote Close after our own Close: disconnect.
    Local Close: stop writing and wait for the acknowledgement, or
    disconnect if it was itself the acknowledgement.
    """

    async def process_incoming(self, stack: ProcessStack, connection: Connection) -> Message:
        message = await stack.handle_incoming()
        if message.opcode != "close":
            return message
        if connection.is_writable:
            status = message.close_status
            log.debug(f"Received 'close', status: {status}")
            connection.close_read()
            await connection.send(Message.close(status, f"Close acknowledged: {status}"))
        else:
            log.debug("Received 'close' acknowledge, disconnecting")
            await connection.disconnect()
        return message

    async def process_outgoing(self, stack: ProcessStack, connection: Connection, message: Message) -> Message:
        message = await stack.handle_outgoing(message)
        if message.opcode != "close":
            return message
        if connection.is_readable:
            log.debug(f"Sent 'close', status: {message.close_status}")
            connection.close_write()
        else:
            log.debug("Sent 'close' acknowledge, disconnecting")
            await connection.disconnect()
        return message


class PingResponder(Middleware):
    """Answer every ping with a pong carrying the same payload."""

    async def process_incoming(self, stack: ProcessStack, connection: Connection) -> Message:
        message = await stack.handle_incoming()
        if message.opcode == "ping" and connection.is_writable:
            log.debug("Answering 'ping'")
            await connection.send(Message("pong", message.payload))
        return message


class FollowRedirect(Middleware):
    """Reconnect on 3xx handshake responses, at most `limit` times."""

    def __init__(self, limit: int = 10):
        self.limit = limit
        self.attempts = 1

    async def process_http_incoming(self, stack: ProcessHttpStack, connection: Connection) -> HttpResponse:
        response = await stack.handle_http_incoming()
        location = response.headers.get("Location")
        if 300 <= response.status_code < 400 and location:
            if self.attempts > self.limit:
                log.debug("Too many redirect attempts, giving up")
                raise HandshakeError("Too many redirect attempts, giving up", response)
            log.debug(
                f"{response.status_code} {location} "
                f"({self.attempts} of {self.limit} redirect attempts)"
            )
            self.attempts += 1
            raise ReconnectRequired(str(httpx.URL(connection.uri).join(location)))
        return response


class CompressionExtension(Middleware):
    """Negotiate permessage-deflate and apply it to text/binary messages."""

    def __init__(self, *compressors: DeflateCompressor):
        self.compressors = compressors

    async def process_http_outgoing(
        self, stack: ProcessHttpStack, connection: Connection, request: HttpRequest,
    ) -> HttpRequest:
        connection.meta[COMPRESSION_META] = None
        offers = ", ".join(c.request_header_value() for c in self.compressors)
        request.headers["Sec-WebSocket-Extensions"] = offers
        return await stack.handle_http_outgoing(request)

    async def process_http_incoming(self, stack: ProcessHttpStack, connection: Connection) -> HttpResponse:
        response = await stack.handle_http_incoming()
        preferred = self._preferred(response)
        if preferred:
            compressor, config = preferred
            connection.meta[COMPRESSION_META] = preferred
            log.debug(f"Using {compressor}: {config}")
        return response

    async def process_incoming(self, stack: ProcessStack, connection: Connection) -> Message:
        message = await stack.handle_incoming()
        negotiated = connection.meta.get(COMPRESSION_META)
        if message.opcode in ("text", "binary") and message.compressed and negotiated:
            compressor, config = negotiated
            message = compressor.decompress(message, config)
        return message

    async def process_outgoing(self, stack: ProcessStack, connection: Connection, message: Message) -> Message:
        negotiated = connection.meta.get(COMPRESSION_META)
        if message.opcode in ("text", "binary") and not message.compressed and negotiated:
            compressor, config = negotiated
            message = compressor.compress(message, config)
        return await stack.handle_outgoing(message)

    def _preferred(self, response: HttpResponse) -> tuple[DeflateCompressor, CompressionConfig] | None:
        for header in response.header_values("Sec-WebSocket-Extensions"):
            for element in header.split(","):
                for compressor in self.compressors:
                    config = compressor.configuration(element.strip(), is_server=False)
                    if compressor.is_eligible(config):
                        return compressor, config
        return None
