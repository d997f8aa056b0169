"""
permessage-deflate (RFC 7692).

The compressor parses negotiation elements into a per-connection
CompressionConfig and carries the zlib contexts there. Window bits and
context takeover are role-aware: a client compresses with the client_*
settings and decompresses with the server_* settings, a server the other
way round.

Negotiation header format:
    permessage-deflate[; server_no_context_takeover][; client_no_context_takeover]
                      [; server_max_window_bits=N][; client_max_window_bits=N]
"""

import zlib
from dataclasses import dataclass, field
from typing import Any

from transport.errors import HandshakeError
from transport.messages import Message

EXTENSION_NAME = "permessage-deflate"

MIN_WINDOW_BITS = 9
MAX_WINDOW_BITS = 15

# Sync-flush trailer; stripped after compressing, restored before inflating
DEFLATE_TRAILER = b"\x00\x00\xff\xff"


def _window_bits(key: str, value: str) -> int:
    """Bare parameter means the maximum."""
    if not value:
        return MAX_WINDOW_BITS
    try:
        return int(value)
    except ValueError:
        raise HandshakeError(f"Invalid {key} in extension response: {value!r}") from None


@dataclass
class CompressionConfig:
    """Negotiated parameters plus live zlib contexts for one connection."""
    is_server: bool
    server_no_context_takeover: bool
    client_no_context_takeover: bool
    server_max_window_bits: int
    client_max_window_bits: int
    extension: str | None = None
    deflator: Any = field(default=None, repr=False)
    inflator: Any = field(default=None, repr=False)


class DeflateCompressor:
    """
    Compressor for permessage-deflate.

    Args:
        server_no_context_takeover: Ask the server to reset its window per message
        client_no_context_takeover: Reset our own window per message
        server_max_window_bits: Upper bound for the server's LZ77 window (9-15)
        client_max_window_bits: Upper bound for our own LZ77 window (9-15)

    Raises:
        ValueError: If a window size is outside 9-15
    """

    def __init__(
        self,
        server_no_context_takeover: bool = False,
        client_no_context_takeover: bool = False,
        server_max_window_bits: int = MAX_WINDOW_BITS,
        client_max_window_bits: int = MAX_WINDOW_BITS,
    ):
        for name, bits in (
            ("server_max_window_bits", server_max_window_bits),
            ("client_max_window_bits", client_max_window_bits),
        ):
            if not MIN_WINDOW_BITS <= bits <= MAX_WINDOW_BITS:
                raise ValueError(f"{name} must be in range {MIN_WINDOW_BITS}-{MAX_WINDOW_BITS}, got {bits}")

        self.server_no_context_takeover = server_no_context_takeover
        self.client_no_context_takeover = client_no_context_takeover
        self.server_max_window_bits = server_max_window_bits
        self.client_max_window_bits = client_max_window_bits

    def __str__(self) -> str:
        return "DeflateCompressor"

    def request_header_value(self) -> str:
        """Extension offer sent by a client."""
        header = EXTENSION_NAME
        if self.server_no_context_takeover:
            header += "; server_no_context_takeover"
        if self.client_no_context_takeover:
            header += "; client_no_context_takeover"
        if self.server_max_window_bits != MAX_WINDOW_BITS:
            header += f"; server_max_window_bits={self.server_max_window_bits}"
        if self.client_max_window_bits != MAX_WINDOW_BITS:
            header += f"; client_max_window_bits={self.client_max_window_bits}"
        return header

    def response_header_value(self, config: CompressionConfig) -> str:
        """Extension agreement sent back by a server."""
        header = EXTENSION_NAME
        if config.server_no_context_takeover:
            header += "; server_no_context_takeover"
        if config.client_no_context_takeover:
            header += "; client_no_context_takeover"
        server_bits = min(config.server_max_window_bits, self.server_max_window_bits)
        if server_bits != MAX_WINDOW_BITS:
            header += f"; server_max_window_bits={server_bits}"
        client_bits = min(config.client_max_window_bits, self.client_max_window_bits)
        if client_bits != MAX_WINDOW_BITS:
            header += f"; client_max_window_bits={client_bits}"
        return header

    def configuration(self, element: str, is_server: bool) -> CompressionConfig:
        """Parse one comma-separated extension element, starting from our defaults."""
        config = CompressionConfig(
            is_server=is_server,
            server_no_context_takeover=self.server_no_context_takeover,
            client_no_context_takeover=self.client_no_context_takeover,
            server_max_window_bits=self.server_max_window_bits,
            client_max_window_bits=self.client_max_window_bits,
        )
        for parameter in element.split(";"):
            key, _, value = parameter.partition("=")
            key = key.strip()
            value = value.strip().strip('"')
            if key == EXTENSION_NAME:
                config.extension = key
            elif key == "server_no_context_takeover":
                config.server_no_context_takeover = True
            elif key == "client_no_context_takeover":
                config.client_no_context_takeover = True
            elif key == "server_max_window_bits":
                bits = _window_bits(key, value)
                config.server_max_window_bits = min(bits, self.server_max_window_bits)
            elif key == "client_max_window_bits":
                bits = _window_bits(key, value)
                config.client_max_window_bits = min(bits, self.client_max_window_bits)
        return config

    def is_eligible(self, config: CompressionConfig) -> bool:
        return (
            config.extension == EXTENSION_NAME
            and MIN_WINDOW_BITS <= config.server_max_window_bits <= self.server_max_window_bits
            and MIN_WINDOW_BITS <= config.client_max_window_bits <= self.client_max_window_bits
        )

    def compress(self, message: Message, config: CompressionConfig) -> Message:
        window_bits = config.server_max_window_bits if config.is_server else config.client_max_window_bits
        no_takeover = config.server_no_context_takeover if config.is_server else config.client_no_context_takeover

        if config.deflator is None or no_takeover:
            config.deflator = zlib.compressobj(
                zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -window_bits,
            )
        deflated = config.deflator.compress(message.payload) + config.deflator.flush(zlib.Z_SYNC_FLUSH)
        if deflated.endswith(DEFLATE_TRAILER):
            deflated = deflated[:-4]
        return Message(message.opcode, deflated, compressed=True)

    def decompress(self, message: Message, config: CompressionConfig) -> Message:
        window_bits = config.client_max_window_bits if config.is_server else config.server_max_window_bits
        no_takeover = config.client_no_context_takeover if config.is_server else config.server_no_context_takeover

        if config.inflator is None or no_takeover:
            config.inflator = zlib.decompressobj(-window_bits)
        inflated = config.inflator.decompress(message.payload + DEFLATE_TRAILER)
        return Message(message.opcode, inflated, compressed=False)
