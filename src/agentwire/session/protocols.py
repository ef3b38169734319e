"""Contract between the session layer and an agent engine.

The engine is a black box: it receives ordered input items, a resume token
and a RunOptions bundle, and reports back through a single RunListener.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Union, runtime_checkable

# -----------------------------------------------------------------------------
# Cancellation
# -----------------------------------------------------------------------------


class CancelToken:
    """Cooperative cancellation signal for one run.

    Passed to the engine and checked by the wrapper before forwarding any
    event or waiting on a confirmation.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "cancelled") -> bool:
        """Fire the token. Returns False if it had already fired."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"aborted: {self.reason}" if self.aborted else "active"
        return f"CancelToken({state})"


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemEvent:
    """The engine produced an output item (message, tool call, tool result)."""

    item: dict[str, Any]


@dataclass(frozen=True)
class LoadingEvent:
    """The engine started (True) or stopped (False) waiting on the model."""

    loading: bool


@dataclass(frozen=True)
class ResponseIdEvent:
    """Resume token for the next run on the same conversation."""

    response_id: str


RunEvent = Union[ItemEvent, LoadingEvent, ResponseIdEvent]


# -----------------------------------------------------------------------------
# Confirmation
# -----------------------------------------------------------------------------


class ReviewDecision(Enum):
    APPROVED = "approved"
    DENIED = "denied"


@dataclass
class CommandConfirmation:
    """Outcome of an approval request, as seen by the engine.

    Attributes:
        review: Whether the command may run.
        explanation: Reason supplied with a deny, for the model to read.
        apply_patch: The patch to apply, only set when approved.
    """

    review: ReviewDecision
    explanation: str | None = None
    apply_patch: str | None = None

    @property
    def approved(self) -> bool:
        return self.review is ReviewDecision.APPROVED

    @classmethod
    def deny(cls, explanation: str | None = None) -> CommandConfirmation:
        return cls(review=ReviewDecision.DENIED, explanation=explanation)


# -----------------------------------------------------------------------------
# Engine Protocols
# -----------------------------------------------------------------------------


class RunListener(Protocol):
    """Receives everything an engine reports during one run."""

    async def on_event(self, event: RunEvent) -> None:
        """Handle one engine event, in the order the engine produced it."""
        ...

    async def get_command_confirmation(
        self,
        command: list[str],
        patch: str | None = None,
        explanation: str | None = None,
    ) -> CommandConfirmation:
        """Block until the command is approved, denied or times out."""
        ...


@dataclass
class RunOptions:
    """Per-run settings handed to AgentEngine.run()."""

    model: str
    provider: str
    instructions: str | None
    approval_policy: str
    signal: CancelToken
    listener: RunListener


@runtime_checkable
class AgentEngine(Protocol):
    """An agent that turns input items into output items.

    Engines may also define ``terminate()`` (sync or async); the session
    registry calls it when the owning session is destroyed.
    """

    async def run(
        self,
        input_items: list[dict[str, Any]],
        previous_response_id: str | None,
        options: RunOptions,
    ) -> None:
        """Run until the model is done, the token fires, or an error occurs."""
        ...


EngineFactory = Callable[[], AgentEngine]
