"""Tests for wire framing and incremental decoding."""

from __future__ import annotations

import struct

import pytest

from agentwire.protocol import CancelFrame, StatusFrame, UserMessageFrame, encode
from agentwire.transport import (
    LENGTH_PREFIXED_CONTENT_TYPE,
    NDJSON_CONTENT_TYPE,
    FrameDecoder,
    Framing,
    FramingError,
    frame_bytes,
    negotiate_framing,
)


def _payloads() -> list[bytes]:
    return [
        encode(UserMessageFrame(session_id="s1", content="hello\nworld")),
        encode(CancelFrame(session_id="s1")),
        encode(StatusFrame(message="ünïcødé")),
    ]


class TestNegotiateFraming:
    """Tests for content-type negotiation."""

    def test_missing_header_is_delimited(self) -> None:
        """No content type selects NDJSON."""
        assert negotiate_framing(None) is Framing.DELIMITED
        assert negotiate_framing("") is Framing.DELIMITED

    def test_length_prefixed(self) -> None:
        """The length-prefixed media type selects length-prefixed framing."""
        assert negotiate_framing(LENGTH_PREFIXED_CONTENT_TYPE) is Framing.LENGTH_PREFIXED

    def test_parameters_and_case_ignored(self) -> None:
        """Media-type parameters and case do not affect negotiation."""
        result = negotiate_framing("Application/Length-Prefixed-JSON; charset=utf-8")
        assert result is Framing.LENGTH_PREFIXED

    def test_unknown_type_is_delimited(self) -> None:
        """Anything else falls back to NDJSON."""
        assert negotiate_framing("application/json") is Framing.DELIMITED

    def test_content_type_echo(self) -> None:
        """Each framing reports the content type it answers with."""
        assert Framing.DELIMITED.content_type == NDJSON_CONTENT_TYPE
        assert Framing.LENGTH_PREFIXED.content_type == LENGTH_PREFIXED_CONTENT_TYPE


class TestFrameBytes:
    """Tests for frame_bytes()."""

    def test_delimited_appends_newline(self) -> None:
        """Delimited frames end with a newline."""
        assert frame_bytes(b'{"a":1}', Framing.DELIMITED) == b'{"a":1}\n'

    def test_delimited_rejects_embedded_newline(self) -> None:
        """A raw newline inside a delimited payload would split the frame."""
        with pytest.raises(FramingError, match="newline"):
            frame_bytes(b'{"a":\n1}', Framing.DELIMITED)

    def test_length_prefixed_header(self) -> None:
        """Length-prefixed frames start with a big-endian uint32 length."""
        data = frame_bytes(b"abc", Framing.LENGTH_PREFIXED)
        assert data == struct.pack(">I", 3) + b"abc"


class TestFrameDecoder:
    """Tests for FrameDecoder."""

    @pytest.mark.parametrize("framing", list(Framing))
    def test_whole_stream(self, framing: Framing) -> None:
        """Feeding the whole stream at once yields every payload in order."""
        payloads = _payloads()
        stream = b"".join(frame_bytes(p, framing) for p in payloads)
        decoder = FrameDecoder(framing)
        assert decoder.feed(stream) == payloads
        assert decoder.flush() == []

    @pytest.mark.parametrize("framing", list(Framing))
    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 7, 64])
    def test_arbitrary_chunking(self, framing: Framing, chunk_size: int) -> None:
        """Any chunking of the byte stream yields the same frame sequence."""
        payloads = _payloads()
        stream = b"".join(frame_bytes(p, framing) for p in payloads)
        decoder = FrameDecoder(framing)
        result: list[bytes] = []
        for i in range(0, len(stream), chunk_size):
            result.extend(decoder.feed(stream[i : i + chunk_size]))
        result.extend(decoder.flush())
        assert result == payloads

    def test_partial_frame_is_buffered(self) -> None:
        """Incomplete frames are held until the rest arrives."""
        decoder = FrameDecoder(Framing.DELIMITED)
        assert decoder.feed(b'{"type":"hea') == []
        assert decoder.buffered == len(b'{"type":"hea')
        assert decoder.feed(b'rtbeat"}\n') == [b'{"type":"heartbeat"}']
        assert decoder.buffered == 0

    def test_delimited_skips_blank_lines_and_cr(self) -> None:
        """Blank lines are skipped and CRLF line endings are accepted."""
        decoder = FrameDecoder(Framing.DELIMITED)
        assert decoder.feed(b'\n\r\n{"a":1}\r\n\n{"b":2}\n') == [b'{"a":1}', b'{"b":2}']

    def test_delimited_unterminated_tail_flushed(self) -> None:
        """An unterminated last line is decoded at end of input."""
        decoder = FrameDecoder(Framing.DELIMITED)
        assert decoder.feed(b'{"a":1}\n{"b":2}') == [b'{"a":1}']
        assert decoder.flush() == [b'{"b":2}']

    def test_delimited_whitespace_tail_ignored(self) -> None:
        """A whitespace-only tail is not a frame."""
        decoder = FrameDecoder(Framing.DELIMITED)
        decoder.feed(b"  ")
        assert decoder.flush() == []

    def test_delimited_oversized_line(self) -> None:
        """A line over the size limit is a framing error."""
        decoder = FrameDecoder(Framing.DELIMITED, max_frame_size=8)
        with pytest.raises(FramingError, match="exceeds maximum"):
            decoder.feed(b'{"a":"123456789"}\n')

    def test_delimited_oversized_unterminated(self) -> None:
        """Unterminated input over the size limit fails before a newline arrives."""
        decoder = FrameDecoder(Framing.DELIMITED, max_frame_size=8)
        with pytest.raises(FramingError, match="Unterminated"):
            decoder.feed(b"x" * 9)

    def test_length_prefixed_oversized_header(self) -> None:
        """A length header over the limit fails without waiting for the body."""
        decoder = FrameDecoder(Framing.LENGTH_PREFIXED, max_frame_size=8)
        with pytest.raises(FramingError, match="exceeds maximum"):
            decoder.feed(struct.pack(">I", 9))

    def test_length_prefixed_eof_mid_frame(self) -> None:
        """Ending inside a frame body is a framing error."""
        decoder = FrameDecoder(Framing.LENGTH_PREFIXED)
        decoder.feed(struct.pack(">I", 10) + b"abc")
        with pytest.raises(FramingError, match="expected 10 bytes, got 3"):
            decoder.flush()

    def test_length_prefixed_eof_mid_header(self) -> None:
        """Ending inside a length header is a framing error."""
        decoder = FrameDecoder(Framing.LENGTH_PREFIXED)
        decoder.feed(b"\x00\x00")
        with pytest.raises(FramingError, match="length header"):
            decoder.flush()

    def test_length_prefixed_payload_may_contain_newlines(self) -> None:
        """Length-prefixed payloads are opaque bytes."""
        decoder = FrameDecoder(Framing.LENGTH_PREFIXED)
        assert decoder.feed(frame_bytes(b"a\nb", Framing.LENGTH_PREFIXED)) == [b"a\nb"]

    def test_zero_length_frame(self) -> None:
        """A zero-length frame yields an empty payload."""
        decoder = FrameDecoder(Framing.LENGTH_PREFIXED)
        assert decoder.feed(struct.pack(">I", 0)) == [b""]
