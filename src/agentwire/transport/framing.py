"""Wire framing for agent streams.

Two framings are supported, chosen once per connection from the request
content type:

Delimited (``application/x-ndjson``):
    <json-frame>\\n

Length-prefixed (``application/length-prefixed-json``):
    <uint32 big-endian length><json-frame>

The decoder is incremental: bytes are fed as they arrive and complete frame
payloads are returned once fully buffered, regardless of where chunk
boundaries fall.
"""

from __future__ import annotations

import struct
from enum import Enum

NDJSON_CONTENT_TYPE = "application/x-ndjson"
LENGTH_PREFIXED_CONTENT_TYPE = "application/length-prefixed-json"

NEWLINE = b"\n"
CR = b"\r"
LENGTH_HEADER = struct.Struct(">I")
LENGTH_HEADER_SIZE = LENGTH_HEADER.size
MAX_LENGTH = 2**32 - 1


class FramingError(Exception):
    """Error in stream framing.

    Raised when:
    - A length header or delimited line exceeds the maximum frame size
    - The stream ends in the middle of a length-prefixed frame
    - A payload is too large to carry in a 4-byte length header
    """


class Framing(str, Enum):
    DELIMITED = "delimited"
    LENGTH_PREFIXED = "length-prefixed"

    @property
    def content_type(self) -> str:
        if self is Framing.LENGTH_PREFIXED:
            return LENGTH_PREFIXED_CONTENT_TYPE
        return NDJSON_CONTENT_TYPE


def negotiate_framing(content_type: str | None) -> Framing:
    """Pick a framing from a request content type.

    Media-type parameters are ignored. Anything other than the
    length-prefixed type, including a missing header, selects delimited.

    Example:
        >>> negotiate_framing("application/length-prefixed-json; charset=utf-8")
        <Framing.LENGTH_PREFIXED: 'length-prefixed'>
    """
    if not content_type:
        return Framing.DELIMITED
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == LENGTH_PREFIXED_CONTENT_TYPE:
        return Framing.LENGTH_PREFIXED
    return Framing.DELIMITED


def frame_bytes(payload: bytes, framing: Framing) -> bytes:
    """Wrap one encoded frame payload for the wire.

    Raises:
        FramingError: If a delimited payload contains a newline, or a
            length-prefixed payload does not fit in the header.
    """
    if framing is Framing.LENGTH_PREFIXED:
        if len(payload) > MAX_LENGTH:
            raise FramingError(f"Payload of {len(payload)} bytes exceeds length header range")
        return LENGTH_HEADER.pack(len(payload)) + payload

    if NEWLINE in payload:
        raise FramingError("Delimited payload must not contain a raw newline")
    return payload + NEWLINE


class FrameDecoder:
    """Incremental decoder for one direction of one connection.

    Example:
        >>> decoder = FrameDecoder(Framing.DELIMITED)
        >>> decoder.feed(b'{"type":"hea')
        []
        >>> decoder.feed(b'rtbeat"}\\n')
        [b'{"type":"heartbeat"}']
    """

    def __init__(self, framing: Framing, max_frame_size: int = 10 * 1024 * 1024) -> None:
        self.framing = framing
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()
        # Length of the frame body being waited on (length-prefixed only)
        self._expected: int | None = None

    @property
    def buffered(self) -> int:
        """Bytes held waiting for the rest of a frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Buffer ``data`` and return every payload it completes, in order."""
        if data:
            self._buffer.extend(data)
        if self.framing is Framing.LENGTH_PREFIXED:
            return self._drain_length_prefixed()
        return self._drain_delimited()

    def flush(self) -> list[bytes]:
        """Signal end of input and return any final payload.

        Raises:
            FramingError: If a length-prefixed frame was left incomplete.
        """
        if self.framing is Framing.LENGTH_PREFIXED:
            if self._buffer or self._expected is not None:
                expected = self._expected
                got = len(self._buffer)
                self._buffer.clear()
                self._expected = None
                if expected is None:
                    raise FramingError(
                        f"Stream ended inside a length header ({got} of {LENGTH_HEADER_SIZE} bytes)"
                    )
                raise FramingError(f"Stream ended mid-frame: expected {expected} bytes, got {got}")
            return []

        # Unterminated last line counts as a frame
        tail = bytes(self._buffer).rstrip(CR)
        self._buffer.clear()
        return [tail] if tail.strip() else []

    def _drain_delimited(self) -> list[bytes]:
        frames: list[bytes] = []
        while True:
            index = self._buffer.find(NEWLINE)
            if index == -1:
                break
            line = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            if line.endswith(CR):
                line = line[:-1]
            if not line.strip():
                continue
            if len(line) > self.max_frame_size:
                raise FramingError(
                    f"Frame size {len(line)} exceeds maximum {self.max_frame_size}"
                )
            frames.append(line)

        if len(self._buffer) > self.max_frame_size:
            raise FramingError(
                f"Unterminated frame exceeds maximum {self.max_frame_size} bytes"
            )
        return frames

    def _drain_length_prefixed(self) -> list[bytes]:
        frames: list[bytes] = []
        while True:
            if self._expected is None:
                if len(self._buffer) < LENGTH_HEADER_SIZE:
                    break
                (length,) = LENGTH_HEADER.unpack_from(self._buffer)
                del self._buffer[:LENGTH_HEADER_SIZE]
                if length > self.max_frame_size:
                    raise FramingError(
                        f"Frame size {length} exceeds maximum {self.max_frame_size}"
                    )
                self._expected = length

            if len(self._buffer) < self._expected:
                break

            payload = bytes(self._buffer[: self._expected])
            del self._buffer[: self._expected]
            self._expected = None
            frames.append(payload)
        return frames
