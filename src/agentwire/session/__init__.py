"""Session layer: registry, confirmation queue and per-session run driver."""

from agentwire.session.agent_wrapper import AgentWrapper, RunState, user_message_to_input_items
from agentwire.session.confirmation_queue import (
    ConfirmationError,
    ConfirmationQueue,
    ConfirmationRejected,
    ConfirmationResult,
    ConfirmationTimeout,
)
from agentwire.session.protocols import (
    AgentEngine,
    CancelToken,
    CommandConfirmation,
    EngineFactory,
    ItemEvent,
    LoadingEvent,
    ResponseIdEvent,
    ReviewDecision,
    RunEvent,
    RunListener,
    RunOptions,
)
from agentwire.session.session_manager import Session, SessionManager

__all__ = [
    # Registry
    "Session",
    "SessionManager",
    # Confirmations
    "ConfirmationQueue",
    "ConfirmationResult",
    "ConfirmationError",
    "ConfirmationTimeout",
    "ConfirmationRejected",
    # Run driver
    "AgentWrapper",
    "RunState",
    "user_message_to_input_items",
    # Engine contract
    "AgentEngine",
    "EngineFactory",
    "CancelToken",
    "CommandConfirmation",
    "ReviewDecision",
    "RunListener",
    "RunOptions",
    "RunEvent",
    "ItemEvent",
    "LoadingEvent",
    "ResponseIdEvent",
]
