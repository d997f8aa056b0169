"""
Unit tests for the frame codec and message assembly.
"""

import pytest

from transport.errors import BadOpcodeError, CloseError, ConnectionClosedError
from transport.frames import Frame, FrameCodec, apply_mask, read_exactly
from transport.messages import Message, MessageHandler, assemble
from tests.helpers import MemoryStream

CLIENT = FrameCodec(push_masked=True, pull_masked_required=False)
SERVER = FrameCodec(push_masked=False, pull_masked_required=True)


class TestFrameRoundTrip:
    """decode(encode(frame)) == frame across the length encodings."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("length", [0, 1, 125, 126, 65535, 65536])
    async def test_masked_round_trip(self, length: int) -> None:
        frame = Frame("binary", bytes(i % 251 for i in range(length)))
        decoded = await SERVER.decode(MemoryStream(CLIENT.encode(frame)))
        assert decoded == frame

    @pytest.mark.asyncio
    async def test_unmasked_round_trip_keeps_flags(self) -> None:
        frame = Frame("text", b"hello", final=False, rsv1=True, rsv3=True)
        decoded = await CLIENT.decode(MemoryStream(SERVER.encode(frame)))
        assert decoded == frame

    @pytest.mark.parametrize("length, marker, header_size", [
        (125, 125, 2),
        (126, 126, 4),
        (65535, 126, 4),
        (65536, 127, 10),
    ])
    def test_length_encoding(self, length: int, marker: int, header_size: int) -> None:
        """7-bit up to 125, 16-bit up to 65535, 64-bit beyond."""
        encoded = SERVER.encode(Frame("binary", b"x" * length))
        assert encoded[1] & 0x7F == marker
        assert len(encoded) == header_size + length

    @pytest.mark.asyncio
    async def test_partial_reads_are_completed(self) -> None:
        frame = Frame("text", b"a" * 300)
        decoded = await SERVER.decode(MemoryStream(CLIENT.encode(frame), chunk=7))
        assert decoded == frame


class TestMasking:
    """Client frames are masked; server role rejects unmasked input."""

    def test_client_frames_carry_mask_bit_and_key(self) -> None:
        encoded = CLIENT.encode(Frame("text", b"hello"))
        assert encoded[1] & 0x80
        assert len(encoded) == 2 + 4 + 5
        assert encoded[6:] != b"hello"

    def test_fresh_key_per_frame(self) -> None:
        keys = {CLIENT.encode(Frame("text", b"hello"))[2:6] for _ in range(8)}
        assert len(keys) > 1

    def test_server_frames_are_not_masked(self) -> None:
        encoded = SERVER.encode(Frame("text", b"hello"))
        assert not encoded[1] & 0x80
        assert encoded[2:] == b"hello"

    @pytest.mark.asyncio
    async def test_unmasked_frame_rejected_with_1002(self) -> None:
        with pytest.raises(CloseError) as exc_info:
            await SERVER.decode(MemoryStream(SERVER.encode(Frame("text", b"hi"))))
        assert exc_info.value.status == 1002

    def test_apply_mask_is_an_involution(self) -> None:
        payload = b"The quick brown fox"
        mask = b"\x01\x02\x03\x04"
        assert apply_mask(payload, mask) != payload
        assert apply_mask(apply_mask(payload, mask), mask) == payload


class TestDecodeErrors:
    """Truncated input and unknown opcodes."""

    @pytest.mark.asyncio
    async def test_empty_read_means_dead_connection(self) -> None:
        truncated = SERVER.encode(Frame("text", b"hello"))[:-2]
        with pytest.raises(ConnectionClosedError, match="Empty read"):
            await CLIENT.decode(MemoryStream(truncated))

    @pytest.mark.asyncio
    async def test_read_exactly_loops_until_complete(self) -> None:
        data = await read_exactly(MemoryStream(b"abcdef", chunk=1), 4)
        assert data == b"abcd"
        assert type(data) is bytes

    @pytest.mark.asyncio
    async def test_reserved_opcode_rejected(self) -> None:
        with pytest.raises(BadOpcodeError):
            await CLIENT.decode(MemoryStream(b"\x83\x00"))

    def test_unknown_opcode_not_encodable(self) -> None:
        with pytest.raises(BadOpcodeError):
            CLIENT.encode(Frame("bogus"))


class TestMessages:
    """Splitting into frames and reassembly."""

    def test_frames_split_with_continuations(self) -> None:
        frames = Message("text", b"abcdefghij", compressed=True).frames(frame_size=4)
        assert [f.opcode for f in frames] == ["text", "continuation", "continuation"]
        assert [f.final for f in frames] == [False, False, True]
        assert [f.rsv1 for f in frames] == [True, False, False]
        assert b"".join(f.payload for f in frames) == b"abcdefghij"

    def test_empty_message_is_one_frame(self) -> None:
        assert Message("text").frames() == [Frame("text", b"", final=True)]

    def test_assemble_uses_first_opcode(self) -> None:
        message = assemble([
            Frame("binary", b"ab", final=False, rsv1=True),
            Frame("continuation", b"cd", final=False),
            Frame("continuation", b"ef", final=True),
        ])
        assert message.opcode == "binary"
        assert message.payload == b"abcdef"
        assert message.compressed

    def test_close_message_status_and_reason(self) -> None:
        message = Message.close(1001, "going away")
        assert message.close_status == 1001
        assert message.close_reason == "going away"
        assert Message("close").close_status is None

    def test_control_messages_cannot_be_compressed(self) -> None:
        with pytest.raises(BadOpcodeError):
            Message("ping", b"", compressed=True)

    @pytest.mark.asyncio
    async def test_handler_reassembles_around_interleaved_ping(self) -> None:
        """A ping between fragments is returned first; the text follows intact."""
        wire = b"".join(SERVER.encode(f) for f in [
            Frame("text", b"Hello, ", final=False),
            Frame("ping", b"p"),
            Frame("continuation", b"World", final=False),
            Frame("continuation", b"!", final=True),
        ])
        handler = MessageHandler(CLIENT, MemoryStream(wire))

        first = await handler.pull()
        second = await handler.pull()
        assert (first.opcode, first.payload) == ("ping", b"p")
        assert (second.opcode, second.content) == ("text", "Hello, World!")

    @pytest.mark.asyncio
    async def test_handler_rejects_new_message_between_fragments(self) -> None:
        wire = b"".join(SERVER.encode(f) for f in [
            Frame("text", b"Hello, ", final=False),
            Frame("binary", b"\x00\x01"),
        ])
        handler = MessageHandler(CLIENT, MemoryStream(wire))
        with pytest.raises(CloseError, match="Expected continuation") as exc_info:
            await handler.pull()
        assert exc_info.value.status == 1002

    @pytest.mark.asyncio
    async def test_handler_push_writes_all_frames(self) -> None:
        stream = MemoryStream()
        await MessageHandler(SERVER, stream).push(Message("binary", b"x" * 10), frame_size=4)
        reader = MessageHandler(CLIENT, MemoryStream(stream.written))
        message = await reader.pull()
        assert message.payload == b"x" * 10
