"""Frame codec: typed frames to UTF-8 JSON bytes and back.

Encoding produces compact JSON. JSON escapes control characters inside
strings, so encoded output never contains a raw newline and is safe for
newline-delimited framing.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from agentwire.protocol.frames import AnyFrame, ClientFrame, FrameModel, ServerFrame

CONTENT_ENCODING = "utf-8"

_client_adapter: TypeAdapter[Any] = TypeAdapter(ClientFrame)
_server_adapter: TypeAdapter[Any] = TypeAdapter(ServerFrame)
_any_adapter: TypeAdapter[Any] = TypeAdapter(AnyFrame)


class ProtocolError(Exception):
    """Base class for frame-level protocol violations."""


class MalformedFrame(ProtocolError):
    """Inbound payload is not a valid frame.

    Attributes:
        raw: The offending payload, kept for logging.
    """

    def __init__(self, message: str, raw: bytes | str) -> None:
        super().__init__(message)
        self.raw = raw

    def preview(self, limit: int = 200) -> str:
        """Printable, truncated form of the raw payload."""
        text = self.raw if isinstance(self.raw, str) else self.raw.decode(CONTENT_ENCODING, "replace")
        return text if len(text) <= limit else text[:limit] + "..."


class FrameEncodeError(ProtocolError):
    """A frame does not match its own declared shape (a programming error)."""


def _to_wire_dict(frame: FrameModel) -> dict[str, Any]:
    data = frame.model_dump(mode="json", by_alias=True)
    # Optional top-level fields are omitted rather than sent as null
    return {key: value for key, value in data.items() if value is not None}


def encode(frame: FrameModel) -> bytes:
    """Serialize a frame to UTF-8 JSON bytes.

    Raises:
        FrameEncodeError: If ``frame`` is not a frame or fails its own validation.
    """
    if not isinstance(frame, FrameModel):
        raise FrameEncodeError(f"Not a frame: {type(frame).__name__}")

    try:
        # Re-validate: model_construct() and mutated nested values skip validation
        type(frame).model_validate(frame.model_dump(by_alias=True))
        wire = _to_wire_dict(frame)
        text = json.dumps(wire, separators=(",", ":"), ensure_ascii=False)
    except (ValidationError, TypeError, ValueError) as e:
        raise FrameEncodeError(f"Cannot encode {type(frame).__name__}: {e}") from e

    return text.encode(CONTENT_ENCODING)


def _decode_with(adapter: TypeAdapter[Any], payload: bytes | str) -> Any:
    try:
        text = payload.decode(CONTENT_ENCODING) if isinstance(payload, bytes) else payload
    except UnicodeDecodeError as e:
        raise MalformedFrame(f"Invalid UTF-8 in frame: {e}", payload) from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedFrame(f"Invalid JSON in frame: {e}", payload) from e

    if not isinstance(data, dict):
        raise MalformedFrame(f"Frame must be a JSON object, got {type(data).__name__}", payload)

    try:
        return adapter.validate_python(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<frame>'}: {err['msg']}"
            for err in e.errors()
        )
        raise MalformedFrame(f"Invalid {data.get('type', 'untyped')!s} frame: {errors}", payload) from e


def decode_client_frame(payload: bytes | str) -> Any:
    """Decode a client->server frame (user_message, approve, cancel, heartbeat)."""
    return _decode_with(_client_adapter, payload)


def decode_server_frame(payload: bytes | str) -> Any:
    """Decode a server->client frame (item, command_prompt, status, ...)."""
    return _decode_with(_server_adapter, payload)


def decode(payload: bytes | str) -> Any:
    """Decode a frame of any type."""
    return _decode_with(_any_adapter, payload)
