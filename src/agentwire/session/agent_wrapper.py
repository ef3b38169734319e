"""Drives one session's runs against its agent engine.

The wrapper translates inbound frames into engine calls and engine events
into outbound frames. A session has at most one run in flight; each run owns
a CancelToken, and the engine call executes as its own task so the stream
handler keeps reading approve and cancel frames while the engine works.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from agentwire.config.merge import deep_merge
from agentwire.logging import get_logger
from agentwire.protocol import (
    ApproveFrame,
    CancelFrame,
    CommandPromptFrame,
    ConfigOverrides,
    ErrorCode,
    ErrorFrame,
    FrameModel,
    ItemFrame,
    StatusFrame,
    UserMessageFrame,
)
from agentwire.session.confirmation_queue import (
    ConfirmationQueue,
    ConfirmationRejected,
    ConfirmationTimeout,
)
from agentwire.session.protocols import (
    CancelToken,
    CommandConfirmation,
    ItemEvent,
    LoadingEvent,
    ResponseIdEvent,
    ReviewDecision,
    RunEvent,
    RunOptions,
)
from agentwire.session.session_manager import Session

log = get_logger("session.wrapper")

FrameSink = Callable[[FrameModel], Awaitable[Any]]

# Seconds to wait for a cancelled engine task to unwind
ENGINE_CANCEL_GRACE = 5.0

DEFAULT_RUN_CONFIG: dict[str, Any] = {
    "model": "gpt-4o",
    "provider": "openai",
    "instructions": None,
    "approval_policy": "suggest",
}


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


def user_message_to_input_items(frame: UserMessageFrame) -> list[dict[str, Any]]:
    """Build engine input items from a user_message frame."""
    content: list[dict[str, Any]] = [{"type": "input_text", "text": frame.content}]
    for path in frame.image_paths or []:
        content.append({"type": "input_image", "image_path": path})
    return [{"type": "message", "role": "user", "content": content}]


def _consume_result(task: asyncio.Future[Any]) -> None:
    if not task.cancelled():
        task.exception()


class _RunListener:
    """RunListener bound to one run's token. Drops everything once aborted."""

    def __init__(self, wrapper: AgentWrapper, token: CancelToken) -> None:
        self._wrapper = wrapper
        self._token = token

    async def on_event(self, event: RunEvent) -> None:
        if self._token.aborted:
            return
        wrapper = self._wrapper
        wrapper.session.touch()

        if isinstance(event, ItemEvent):
            await wrapper.emit(ItemFrame(id=wrapper.next_item_id(), response_item=event.item))
        elif isinstance(event, LoadingEvent):
            await wrapper.emit(StatusFrame(message="thinking" if event.loading else "idle"))
        elif isinstance(event, ResponseIdEvent):
            wrapper.session.last_response_id = event.response_id
        else:
            log.warning("Ignoring unknown engine event: %r", event)

    async def get_command_confirmation(
        self,
        command: list[str],
        patch: str | None = None,
        explanation: str | None = None,
    ) -> CommandConfirmation:
        return await self._wrapper._confirm(self._token, command, patch, explanation)


class AgentWrapper:
    """Per-session run driver.

    Args:
        session: The session whose engine is driven.
        confirmations: Process-wide confirmation queue.
        emit: Coroutine that delivers one outbound frame to the client.
        defaults: Process-wide run configuration used under the session's own.
        approval_timeout: Per-confirmation deadline; None uses the queue default.
    """

    def __init__(
        self,
        session: Session,
        confirmations: ConfirmationQueue,
        emit: FrameSink,
        defaults: dict[str, Any] | None = None,
        approval_timeout: float | None = None,
    ) -> None:
        self.session = session
        self.confirmations = confirmations
        self._emit = emit
        self._defaults = deep_merge(DEFAULT_RUN_CONFIG, defaults or {})
        self.approval_timeout = approval_timeout

        self.state = RunState.IDLE
        self._token: CancelToken | None = None
        self._run_task: asyncio.Task[None] | None = None
        self._item_seq = 0
        self._cleaned_up = False
        # Command ids this wrapper has prompted for and not yet settled
        self._issued: set[str] = set()

    @property
    def pending_commands(self) -> frozenset[str]:
        return frozenset(self._issued)

    @property
    def running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    @property
    def run_task(self) -> asyncio.Task[None] | None:
        return self._run_task

    async def emit(self, frame: FrameModel) -> None:
        await self._emit(frame)

    def next_item_id(self) -> str:
        self._item_seq += 1
        return f"{self.session.id}-item-{self._item_seq}"

    def effective_config(self, overrides: ConfigOverrides | None = None) -> dict[str, Any]:
        """Per-run overrides > session config > process defaults."""
        config = deep_merge(self._defaults, self.session.config)
        if overrides is not None:
            config = deep_merge(config, overrides.model_dump(mode="json", exclude_none=True))
        return config

    # -------------------------------------------------------------------------
    # Frame handlers
    # -------------------------------------------------------------------------

    async def handle_user_message(self, frame: UserMessageFrame) -> asyncio.Task[None]:
        """Start a run for ``frame``, cancelling any run already in flight.

        Returns once the run has started; the run itself continues as a task.
        """
        if self.running:
            log.warning("Run already in progress for %s; cancelling it", self.session.id)
            await self.cancel_current_run("interrupted by new message")

        config = self.effective_config(frame.config_overrides)
        token = CancelToken()
        self._token = token

        await self.emit(StatusFrame(message="processing"))

        self.state = RunState.RUNNING
        self.session.busy = True
        self.session.touch()
        task = asyncio.create_task(
            self._run(token, user_message_to_input_items(frame), config),
            name=f"run-{self.session.id}",
        )
        self._run_task = task
        return task

    def handle_approve(self, frame: ApproveFrame) -> bool:
        """Forward a decision for a command this wrapper prompted for."""
        if frame.command_id not in self._issued:
            log.warning(
                "Ignoring approve for %s: not a pending command of session %s",
                frame.command_id,
                self.session.id,
            )
            return False
        return self.confirmations.resolve(frame.command_id, frame.decision, frame.explanation)

    async def handle_cancel(self, frame: CancelFrame) -> bool:
        """Abort the current run and withdraw the session's pending prompts."""
        cancelled = await self.cancel_current_run("cancelled by client")
        self._withdraw_pending("cancelled by client")
        if not cancelled:
            log.info("Cancel for %s with no run in progress", frame.session_id)
        return cancelled

    async def cancel_current_run(self, reason: str) -> bool:
        """Fire the current run's token and wait for the run to unwind.

        Returns False if there was no run in flight.
        """
        task, token = self._run_task, self._token
        if task is None or token is None or task.done():
            return False

        log.info("Cancelling run for %s: %s", self.session.id, reason)
        token.abort(reason)
        await asyncio.wait({task})
        return True

    async def cleanup(self) -> None:
        """Cancel any run and clear the session's confirmations. Idempotent."""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        await self.cancel_current_run("stream closed")
        cleared = self._withdraw_pending("session cleanup")
        log.debug("Cleaned up wrapper for %s (%d confirmations cleared)", self.session.id, cleared)

    def _withdraw_pending(self, reason: str) -> int:
        """Reject the prompts this wrapper issued. Other sessions' prompts are untouched."""
        cleared = 0
        for command_id in list(self._issued):
            if self.confirmations.reject(command_id, reason):
                cleared += 1
        self._issued.clear()
        return cleared

    # -------------------------------------------------------------------------
    # Run execution
    # -------------------------------------------------------------------------

    async def _run(
        self,
        token: CancelToken,
        input_items: list[dict[str, Any]],
        config: dict[str, Any],
    ) -> None:
        options = RunOptions(
            model=config["model"],
            provider=config["provider"],
            instructions=config.get("instructions"),
            approval_policy=config["approval_policy"],
            signal=token,
            listener=_RunListener(self, token),
        )
        engine_task = asyncio.create_task(
            self.session.engine.run(input_items, self.session.last_response_id, options)
        )
        engine_task.add_done_callback(_consume_result)
        abort_waiter = asyncio.create_task(token.wait())

        try:
            await asyncio.wait({engine_task, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)

            if token.aborted:
                if not engine_task.done():
                    engine_task.cancel()
                    done, _ = await asyncio.wait({engine_task}, timeout=ENGINE_CANCEL_GRACE)
                    if not done:
                        log.warning("Engine for %s ignored cancellation", self.session.id)
                self.state = RunState.CANCELLED
                await self.emit(StatusFrame(message="cancelled", details={"reason": token.reason}))
                return

            engine_task.result()
            self.state = RunState.COMPLETED
            await self.emit(StatusFrame(message="completed"))
        except asyncio.CancelledError:
            if not engine_task.done():
                engine_task.cancel()
            self.state = RunState.CANCELLED
            raise
        except Exception as e:
            log.exception("Run failed for session %s", self.session.id)
            self.state = RunState.FAILED
            await self.emit(ErrorFrame(message=f"Agent run failed: {e}", code=ErrorCode.AGENT_ERROR))
        finally:
            abort_waiter.cancel()
            if self._token is token:
                self.session.busy = False
            self.session.touch()

    async def _confirm(
        self,
        token: CancelToken,
        command: list[str],
        patch: str | None,
        explanation: str | None,
    ) -> CommandConfirmation:
        if token.aborted:
            return CommandConfirmation.deny("Run cancelled")

        command_id = f"{self.session.id}-cmd-{uuid.uuid4()}"
        self._issued.add(command_id)
        # Registered before the prompt goes out so an immediate approve is not lost
        future = self.confirmations.register(command_id, timeout=self.approval_timeout)
        abort_waiter = asyncio.create_task(token.wait())

        try:
            await self.emit(
                CommandPromptFrame(
                    command_id=command_id,
                    command=list(command),
                    apply_patch=patch,
                    explanation=explanation,
                )
            )
            await asyncio.wait({future, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not future.done():
                return CommandConfirmation.deny("Run cancelled")
            result = future.result()
        except ConfirmationTimeout:
            if not token.aborted:
                await self.emit(
                    ErrorFrame(
                        message=f"Approval timed out for command {command_id}",
                        code=ErrorCode.TIMEOUT,
                        details={"commandId": command_id},
                    )
                )
            return CommandConfirmation.deny("Approval timed out")
        except ConfirmationRejected as e:
            return CommandConfirmation.deny(f"Approval withdrawn: {e.reason}")
        finally:
            abort_waiter.cancel()
            self.confirmations.reject(command_id, "run ended")
            self._issued.discard(command_id)

        if result.allowed:
            return CommandConfirmation(
                review=ReviewDecision.APPROVED,
                explanation=result.explanation,
                apply_patch=patch,
            )
        return CommandConfirmation.deny(result.explanation)
