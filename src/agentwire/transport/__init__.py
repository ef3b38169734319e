"""Stream transport: wire framing, duplex frame streams and ASGI adapters."""

from agentwire.transport.asgi import ResponseSink, request_body_source, send_plain_response
from agentwire.transport.framing import (
    LENGTH_PREFIXED_CONTENT_TYPE,
    NDJSON_CONTENT_TYPE,
    FrameDecoder,
    Framing,
    FramingError,
    frame_bytes,
    negotiate_framing,
)
from agentwire.transport.stream import ByteSink, StreamTransport

__all__ = [
    "ByteSink",
    "FrameDecoder",
    "Framing",
    "FramingError",
    "LENGTH_PREFIXED_CONTENT_TYPE",
    "NDJSON_CONTENT_TYPE",
    "ResponseSink",
    "StreamTransport",
    "frame_bytes",
    "negotiate_framing",
    "request_body_source",
    "send_plain_response",
]
