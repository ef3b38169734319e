"""Wire frames exchanged over an agent stream.

Every frame is a JSON object with a ``type`` discriminator and an optional
client-supplied correlation ``id``. JSON keys are camelCase; Python attributes
are snake_case and either name is accepted when constructing a frame.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class ApprovalPolicy(str, Enum):
    """How much the engine may do without asking."""

    SUGGEST = "suggest"
    AUTO_EDIT = "auto-edit"
    FULL_AUTO = "full-auto"


class Decision(str, Enum):
    """Client decision on a command_prompt."""

    ALLOW = "allow"
    DENY = "deny"


class FrameModel(BaseModel):
    """Base model for all frames."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str | None = None


class ConfigOverrides(BaseModel):
    """Per-run overrides carried by a user_message."""

    model_config = ConfigDict(populate_by_name=True)

    model: str | None = None
    approval_policy: ApprovalPolicy | None = Field(default=None, alias="approvalPolicy")


# -----------------------------------------------------------------------------
# Client -> Server
# -----------------------------------------------------------------------------


class UserMessageFrame(FrameModel):
    """Start a run. ``sessionId`` is required on the first message of a stream."""

    type: Literal["user_message"] = "user_message"
    session_id: str | None = Field(default=None, alias="sessionId")
    content: str
    image_paths: list[str] | None = Field(default=None, alias="imagePaths")
    config_overrides: ConfigOverrides | None = Field(default=None, alias="configOverrides")


class ApproveFrame(FrameModel):
    """Answer to a command_prompt."""

    type: Literal["approve"] = "approve"
    session_id: str = Field(alias="sessionId", min_length=1)
    command_id: str = Field(alias="commandId", min_length=1)
    decision: Decision
    explanation: str | None = None


class CancelFrame(FrameModel):
    """Abort the session's in-flight run."""

    type: Literal["cancel"] = "cancel"
    session_id: str = Field(alias="sessionId", min_length=1)


# -----------------------------------------------------------------------------
# Server -> Client
# -----------------------------------------------------------------------------


class ItemFrame(FrameModel):
    """One opaque unit of agent output (message, tool call, tool result)."""

    type: Literal["item"] = "item"
    response_item: dict[str, Any] = Field(alias="responseItem")


class CommandPromptFrame(FrameModel):
    """The engine is blocked until the client answers with an approve frame."""

    type: Literal["command_prompt"] = "command_prompt"
    command_id: str = Field(alias="commandId", min_length=1)
    command: list[str]
    apply_patch: str | None = Field(default=None, alias="applyPatch")
    explanation: str | None = None


class StatusFrame(FrameModel):
    type: Literal["status"] = "status"
    message: str
    details: dict[str, Any] | None = None


class ErrorFrame(FrameModel):
    type: Literal["error"] = "error"
    message: str
    code: str | None = None
    retryable: bool | None = None
    details: dict[str, Any] | None = None


class TerminateFrame(FrameModel):
    """Always the last frame of a stream, sent exactly once."""

    type: Literal["terminate"] = "terminate"
    reason: str
    details: dict[str, Any] | None = None


# -----------------------------------------------------------------------------
# Both directions
# -----------------------------------------------------------------------------


class HeartbeatFrame(FrameModel):
    """Liveness only; never changes session state."""

    type: Literal["heartbeat"] = "heartbeat"
    timestamp: datetime

    @classmethod
    def now(cls) -> HeartbeatFrame:
        return cls(timestamp=datetime.now(timezone.utc))


# -----------------------------------------------------------------------------
# Unions
# -----------------------------------------------------------------------------

ClientFrame = Annotated[
    Union[UserMessageFrame, ApproveFrame, CancelFrame, HeartbeatFrame],
    Field(discriminator="type"),
]

ServerFrame = Annotated[
    Union[
        ItemFrame,
        CommandPromptFrame,
        StatusFrame,
        ErrorFrame,
        HeartbeatFrame,
        TerminateFrame,
    ],
    Field(discriminator="type"),
]

AnyFrame = Annotated[
    Union[
        UserMessageFrame,
        ApproveFrame,
        CancelFrame,
        ItemFrame,
        CommandPromptFrame,
        StatusFrame,
        ErrorFrame,
        HeartbeatFrame,
        TerminateFrame,
    ],
    Field(discriminator="type"),
]


class ErrorCode:
    """Machine-readable codes carried by error frames."""

    SESSION_ID_REQUIRED = "session_id_required"
    SESSION_ID_MISMATCH = "session_id_mismatch"
    SESSION_NOT_INITIALIZED = "session_not_initialized"
    SESSION_IN_USE = "session_in_use"
    MALFORMED_FRAME = "malformed_frame"
    FRAME_PROCESSING_ERROR = "frame_processing_error"
    AGENT_ERROR = "agent_error"
    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"
