"""
Frame codec — RFC 6455 section 5.2 framing.

    byte 1: FIN | RSV1 | RSV2 | RSV3 | opcode(4)
    byte 2: MASK | payload length(7)   126 -> 16-bit length follows
                                       127 -> 64-bit length follows
    [4-byte masking key if MASK]
    payload (XOR-ed with key[i % 4] if MASK)

Client frames are always masked with a fresh key. A codec in server role
requires masked input and fails the connection with status 1002 otherwise.
"""

import logging
import os
import struct
from dataclasses import dataclass
from typing import Protocol

from transport.errors import BadOpcodeError, CloseError, ConnectionClosedError

log = logging.getLogger(__name__)

OPCODES: dict[str, int] = {
    "continuation": 0,
    "text": 1,
    "binary": 2,
    "close": 8,
    "ping": 9,
    "pong": 10,
}
_OPCODE_NAMES = {value: name for name, value in OPCODES.items()}

CONTROL_OPCODES = frozenset({"close", "ping", "pong"})

# Protocol error close status
STATUS_PROTOCOL_ERROR = 1002


class ByteStream(Protocol):
    """Anything that hands out bytes; may return fewer than requested."""

    async def read(self, length: int) -> bytes: ...


@dataclass(frozen=True)
class Frame:
    """A single WebSocket frame."""
    opcode: str
    payload: bytes = b""
    final: bool = True
    rsv1: bool = False
    rsv2: bool = False
    rsv3: bool = False

    @property
    def is_continuation(self) -> bool:
        return self.opcode == "continuation"

    @property
    def payload_length(self) -> int:
        return len(self.payload)


def apply_mask(payload: bytes, mask: bytes) -> bytes:
    """XOR payload with the 4-byte mask. Applying it twice restores the input."""
    if not payload:
        return payload
    length = len(payload)
    key = (mask * (length // 4 + 1))[:length]
    return (int.from_bytes(payload, "big") ^ int.from_bytes(key, "big")).to_bytes(length, "big")


class FrameCodec:
    """
    Encode frames to bytes and decode frames from a byte stream.

    Args:
        push_masked: Mask outgoing frames (client role)
        pull_masked_required: Reject unmasked incoming frames (server role)
    """

    def __init__(self, push_masked: bool = True, pull_masked_required: bool = False):
        self.push_masked = push_masked
        self.pull_masked_required = pull_masked_required

    def encode(self, frame: Frame) -> bytes:
        if frame.opcode not in OPCODES:
            raise BadOpcodeError(f"Invalid opcode '{frame.opcode}' provided")

        byte1 = 0b10000000 if frame.final else 0
        byte1 |= 0b01000000 if frame.rsv1 else 0
        byte1 |= 0b00100000 if frame.rsv2 else 0
        byte1 |= 0b00010000 if frame.rsv3 else 0
        byte1 |= OPCODES[frame.opcode]

        mask_bit = 0b10000000 if self.push_masked else 0
        length = frame.payload_length

        if length > 65535:
            header = struct.pack("!BBQ", byte1, mask_bit | 127, length)
        elif length > 125:
            header = struct.pack("!BBH", byte1, mask_bit | 126, length)
        else:
            header = struct.pack("!BB", byte1, mask_bit | length)

        if self.push_masked:
            mask = os.urandom(4)
            return header + mask + apply_mask(frame.payload, mask)
        return header + frame.payload

    async def decode(self, stream: ByteStream) -> Frame:
        """Read exactly one frame from `stream`."""
        byte1, byte2 = await read_exactly(stream, 2)

        final = bool(byte1 & 0b10000000)
        rsv1 = bool(byte1 & 0b01000000)
        rsv2 = bool(byte1 & 0b00100000)
        rsv3 = bool(byte1 & 0b00010000)

        opcode_int = byte1 & 0b00001111
        opcode = _OPCODE_NAMES.get(opcode_int)
        if opcode is None:
            raise BadOpcodeError(f"Invalid opcode '{opcode_int}' received")

        masked = bool(byte2 & 0b10000000)
        length = byte2 & 0b01111111
        if length == 126:
            (length,) = struct.unpack("!H", await read_exactly(stream, 2))
        elif length == 127:
            (length,) = struct.unpack("!Q", await read_exactly(stream, 8))

        mask = await read_exactly(stream, 4) if masked else b""
        payload = await read_exactly(stream, length) if length > 0 else b""
        if masked:
            payload = apply_mask(payload, mask)

        if self.pull_masked_required and not masked:
            log.error("Masking required, but frame was unmasked")
            raise CloseError(STATUS_PROTOCOL_ERROR, "Masking required")

        return Frame(opcode, payload, final, rsv1, rsv2, rsv3)


async def read_exactly(stream: ByteStream, length: int) -> bytes:
    """Loop on partial reads until `length` bytes arrived."""
    data = bytearray()
    while len(data) < length:
        chunk = await stream.read(length - len(data))
        if not chunk:
            raise ConnectionClosedError("Empty read; connection dead?")
        data += chunk
    return bytes(data)
