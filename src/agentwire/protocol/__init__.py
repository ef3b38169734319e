"""Frame protocol: typed frames and their JSON codec."""

from agentwire.protocol.codec import (
    FrameEncodeError,
    MalformedFrame,
    ProtocolError,
    decode,
    decode_client_frame,
    decode_server_frame,
    encode,
)
from agentwire.protocol.frames import (
    AnyFrame,
    ApprovalPolicy,
    ApproveFrame,
    CancelFrame,
    ClientFrame,
    CommandPromptFrame,
    ConfigOverrides,
    Decision,
    ErrorCode,
    ErrorFrame,
    FrameModel,
    HeartbeatFrame,
    ItemFrame,
    ServerFrame,
    StatusFrame,
    TerminateFrame,
    UserMessageFrame,
)

__all__ = [
    # Codec
    "encode",
    "decode",
    "decode_client_frame",
    "decode_server_frame",
    "ProtocolError",
    "MalformedFrame",
    "FrameEncodeError",
    # Frames
    "FrameModel",
    "AnyFrame",
    "ClientFrame",
    "ServerFrame",
    "UserMessageFrame",
    "ApproveFrame",
    "CancelFrame",
    "ItemFrame",
    "CommandPromptFrame",
    "StatusFrame",
    "ErrorFrame",
    "HeartbeatFrame",
    "TerminateFrame",
    "ConfigOverrides",
    # Enums
    "ApprovalPolicy",
    "Decision",
    "ErrorCode",
]
