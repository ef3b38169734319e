"""HTTP surface: stream handler, FastAPI app and server lifecycle."""

from agentwire.server.events import EventHub, format_sse
from agentwire.server.handler import StreamDependencies, StreamHandler
from agentwire.server.routes import StreamEndpoint, create_app
from agentwire.server.server import (
    AgentServer,
    build_callback_sink,
    default_engine_factory,
    run_defaults,
)
from agentwire.server.startup import StartupRun

__all__ = [
    "AgentServer",
    "EventHub",
    "StreamDependencies",
    "StreamEndpoint",
    "StreamHandler",
    "StartupRun",
    "build_callback_sink",
    "create_app",
    "default_engine_factory",
    "format_sse",
    "run_defaults",
]
