"""
Messages — logical units built from one or more frames.

Outgoing messages are split into fixed-size frames; incoming frames are
buffered until a final frame completes the message.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Protocol

from transport.errors import BadOpcodeError, CloseError
from transport.frames import CONTROL_OPCODES, STATUS_PROTOCOL_ERROR, Frame, FrameCodec

log = logging.getLogger(__name__)

DEFAULT_FRAME_SIZE = 4096

MESSAGE_OPCODES = frozenset({"text", "binary", "close", "ping", "pong"})


@dataclass
class Message:
    """A WebSocket message. `compressed` mirrors RSV1 of the first frame."""
    opcode: str
    payload: bytes = b""
    compressed: bool = False

    def __post_init__(self) -> None:
        if self.opcode not in MESSAGE_OPCODES:
            raise BadOpcodeError(f"Invalid opcode '{self.opcode}' provided")
        if self.compressed and self.opcode in CONTROL_OPCODES:
            raise BadOpcodeError("Must not compress control message")

    @classmethod
    def text(cls, content: str) -> "Message":
        return cls("text", content.encode("utf-8"))

    @classmethod
    def close(cls, status: int | None = 1000, reason: str = "") -> "Message":
        payload = b""
        if status is not None:
            payload = struct.pack("!H", status) + reason.encode("utf-8")
        return cls("close", payload)

    @property
    def content(self) -> str:
        return self.payload.decode("utf-8")

    @property
    def close_status(self) -> int | None:
        if self.opcode != "close" or len(self.payload) < 2:
            return None
        (status,) = struct.unpack("!H", self.payload[:2])
        return status

    @property
    def close_reason(self) -> str:
        if self.opcode != "close":
            return ""
        return self.payload[2:].decode("utf-8", errors="replace")

    def frames(self, frame_size: int = DEFAULT_FRAME_SIZE) -> list[Frame]:
        """Split into frames; only the first carries the opcode and RSV1."""
        chunks = [
            self.payload[i:i + frame_size]
            for i in range(0, len(self.payload), frame_size)
        ] or [b""]
        last = len(chunks) - 1
        return [
            Frame(
                self.opcode if i == 0 else "continuation",
                chunk,
                final=i == last,
                rsv1=self.compressed and i == 0,
            )
            for i, chunk in enumerate(chunks)
        ]

    def __str__(self) -> str:
        return f"{self.opcode.capitalize()}({len(self.payload)} bytes)"


class DuplexStream(Protocol):
    async def read(self, length: int) -> bytes: ...

    async def write(self, data: bytes) -> int: ...


class MessageHandler:
    """Push messages as frames, pull frames and assemble messages."""

    def __init__(self, codec: FrameCodec, stream: DuplexStream):
        self._codec = codec
        self._stream = stream
        self._buffer: list[Frame] = []

    async def push(self, message: Message, frame_size: int = DEFAULT_FRAME_SIZE) -> Message:
        frames = message.frames(frame_size)
        for frame in frames:
            await self._stream.write(self._codec.encode(frame))
        log.debug(f"Pushed {message} in {len(frames)} frame(s)")
        return message

    async def pull(self) -> Message:
        while True:
            frame = await self._codec.decode(self._stream)
            if frame.opcode in CONTROL_OPCODES:
                # Control frames may be interleaved with a fragmented message
                return assemble([frame])
            if self._buffer and not frame.is_continuation:
                raise CloseError(STATUS_PROTOCOL_ERROR, f"Expected continuation frame, got {frame.opcode}")
            if not frame.final:
                self._buffer.append(frame)
                continue
            if frame.is_continuation:
                frames, self._buffer = self._buffer + [frame], []
            else:
                frames = [frame]
            message = assemble(frames)
            log.debug(f"Pulled {message} from {len(frames)} frame(s)")
            return message


def assemble(frames: list[Frame]) -> Message:
    """Build a message from a complete frame run."""
    first = frames[0]
    if first.is_continuation:
        raise BadOpcodeError("Message started with a continuation frame")
    return Message(
        first.opcode,
        b"".join(frame.payload for frame in frames),
        compressed=first.rsv1,
    )
