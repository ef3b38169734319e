"""agentwire: a coding agent served over a persistent bidirectional frame stream."""

__version__ = "0.1.0"

# Public API
from agentwire.config import Config, get_config, load_config
from agentwire.protocol import (
    ApproveFrame,
    CancelFrame,
    CommandPromptFrame,
    ErrorFrame,
    HeartbeatFrame,
    ItemFrame,
    StatusFrame,
    TerminateFrame,
    UserMessageFrame,
    decode,
    encode,
)
from agentwire.server import AgentServer, StreamHandler, create_app
from agentwire.session import (
    AgentEngine,
    AgentWrapper,
    CancelToken,
    ConfirmationQueue,
    RunOptions,
    Session,
    SessionManager,
)
from agentwire.transport import Framing, StreamTransport

__all__ = [
    # Server
    "AgentServer",
    "StreamHandler",
    "create_app",
    # Session layer
    "AgentEngine",
    "AgentWrapper",
    "CancelToken",
    "ConfirmationQueue",
    "RunOptions",
    "Session",
    "SessionManager",
    # Transport
    "Framing",
    "StreamTransport",
    # Protocol
    "encode",
    "decode",
    "UserMessageFrame",
    "ApproveFrame",
    "CancelFrame",
    "ItemFrame",
    "CommandPromptFrame",
    "StatusFrame",
    "ErrorFrame",
    "HeartbeatFrame",
    "TerminateFrame",
    # Config
    "Config",
    "load_config",
    "get_config",
]
