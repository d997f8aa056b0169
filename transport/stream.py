"""
Socket stream — thin wrapper over an asyncio reader/writer pair.

Adds per-operation timeouts and half-close bookkeeping so the close
handshake can tell whether we may still read or write.
"""

import asyncio
import logging
import ssl

from transport.errors import (
    ConnectionClosedError,
    ConnectionFailureError,
    ConnectionTimeoutError,
)

log = logging.getLogger(__name__)


class SocketStream:
    """Byte stream with timeouts. `read()` may return fewer bytes than asked."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        timeout: float = 60,
    ):
        self._reader = reader
        self._writer = writer
        self.timeout = timeout
        self._readable = True
        self._writable = True
        self._closed = False

        peer = writer.get_extra_info("peername")
        sock = writer.get_extra_info("sockname")
        self.remote_name = f"{peer[0]}:{peer[1]}" if peer else "<unknown>"
        self.local_name = f"{sock[0]}:{sock[1]}" if sock else "<unknown>"

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        *,
        secure: bool = False,
        timeout: float = 60,
    ) -> "SocketStream":
        """Open a TCP (or TLS) connection within `timeout` seconds."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    host, port, ssl=ssl.create_default_context() if secure else None,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectionTimeoutError(
                f"Timed out after {timeout}s connecting to {host}:{port}"
            ) from e
        except OSError as e:
            raise ConnectionFailureError(
                f'Could not open socket to "{host}:{port}": {e}'
            ) from e
        return cls(reader, writer, timeout=timeout)

    @property
    def is_connected(self) -> bool:
        return not self._closed

    @property
    def is_readable(self) -> bool:
        return not self._closed and self._readable

    @property
    def is_writable(self) -> bool:
        return not self._closed and self._writable

    async def read(self, length: int) -> bytes:
        """Read up to `length` bytes. Returns b"" on EOF."""
        if not self.is_readable:
            raise ConnectionFailureError("Stream is closed for reading")
        try:
            return await asyncio.wait_for(self._reader.read(length), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ConnectionTimeoutError(
                f"Read timed out after {self.timeout}s on {self.remote_name}"
            ) from e
        except ConnectionError as e:
            raise ConnectionClosedError(str(e)) from e

    async def readline(self) -> bytes:
        """Read one line including the terminating newline."""
        if not self.is_readable:
            raise ConnectionFailureError("Stream is closed for reading")
        try:
            line = await asyncio.wait_for(self._reader.readline(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ConnectionTimeoutError(
                f"Read timed out after {self.timeout}s on {self.remote_name}"
            ) from e
        except (ConnectionError, ValueError) as e:
            raise ConnectionClosedError(str(e)) from e
        if not line:
            raise ConnectionClosedError("Could not read HTTP message; connection dead?")
        return line

    async def write(self, data: bytes) -> int:
        if not self.is_writable:
            raise ConnectionFailureError("Stream is closed for writing")
        try:
            self._writer.write(data)
            await asyncio.wait_for(self._writer.drain(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ConnectionTimeoutError(
                f"Write timed out after {self.timeout}s on {self.remote_name}"
            ) from e
        except ConnectionError as e:
            raise ConnectionClosedError(str(e)) from e
        return len(data)

    def close_read(self) -> None:
        self._readable = False

    def close_write(self) -> None:
        self._writable = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), timeout=self.timeout)
        except (asyncio.TimeoutError, ConnectionError, ssl.SSLError) as e:
            log.debug(f"Ignoring error while closing {self.remote_name}: {e}")
