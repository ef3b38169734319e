"""Correlates command_prompt frames with the client's approve decision.

Each pending confirmation is a future keyed by command id with its own
deadline. Every entry settles exactly once: resolved, rejected, or timed out,
and is removed from the queue when it settles.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field

from agentwire.config.schema import DEFAULT_APPROVAL_TIMEOUT
from agentwire.logging import get_logger
from agentwire.protocol import Decision

log = get_logger("confirm")


class ConfirmationError(Exception):
    """A pending confirmation settled without a client decision."""

    def __init__(self, command_id: str, reason: str) -> None:
        self.command_id = command_id
        self.reason = reason
        super().__init__(f"Confirmation {command_id}: {reason}")


class ConfirmationTimeout(ConfirmationError):
    """No decision arrived before the deadline."""


class ConfirmationRejected(ConfirmationError):
    """The confirmation was withdrawn (cancel, teardown, superseded)."""


@dataclass
class ConfirmationResult:
    decision: Decision
    explanation: str | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW


@dataclass
class _Pending:
    future: asyncio.Future[ConfirmationResult]
    timer: asyncio.TimerHandle | None
    created_at: float = field(default_factory=time.monotonic)


def _consume_exception(future: asyncio.Future[ConfirmationResult]) -> None:
    # Keeps asyncio from reporting rejections nobody awaited
    if not future.cancelled():
        future.exception()


class ConfirmationQueue:
    """Pending approval requests keyed by command id.

    Args:
        timeout: Default deadline in seconds for each registration.
    """

    def __init__(self, timeout: float = DEFAULT_APPROVAL_TIMEOUT) -> None:
        self.timeout = timeout
        self._pending: dict[str, _Pending] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, command_id: object) -> bool:
        return command_id in self._pending

    def is_pending(self, command_id: str) -> bool:
        return command_id in self._pending

    def pending_ids(self) -> list[str]:
        return list(self._pending)

    def register(
        self, command_id: str, timeout: float | None = None
    ) -> asyncio.Future[ConfirmationResult]:
        """Start waiting for a decision on ``command_id``.

        The returned future resolves to a ConfirmationResult, or raises
        ConfirmationTimeout / ConfirmationRejected.

        Registering an id that is already pending supersedes the prior
        registration: it is rejected and its timer cancelled.
        """
        loop = asyncio.get_running_loop()

        previous = self._pending.pop(command_id, None)
        if previous is not None:
            log.warning("Confirmation %s registered twice; superseding the prior wait", command_id)
            self._settle_rejected(previous, ConfirmationRejected(command_id, "superseded"))

        future: asyncio.Future[ConfirmationResult] = loop.create_future()
        future.add_done_callback(_consume_exception)

        deadline = self.timeout if timeout is None else timeout
        timer = None
        if deadline is not None and deadline > 0:
            timer = loop.call_later(deadline, self._expire, command_id, future)

        self._pending[command_id] = _Pending(future=future, timer=timer)
        log.debug("Registered confirmation %s (timeout=%ss)", command_id, deadline)
        return future

    def resolve(
        self,
        command_id: str,
        decision: Decision | str,
        explanation: str | None = None,
    ) -> bool:
        """Deliver the client's decision. Returns False for unknown or settled ids.

        Raises:
            ValueError: If ``decision`` is not a valid Decision value.
        """
        decision = Decision(decision)
        entry = self._pending.pop(command_id, None)
        if entry is None:
            log.info("No pending confirmation for %s (already settled or unknown)", command_id)
            return False

        if entry.timer is not None:
            entry.timer.cancel()
        if entry.future.done():
            return False

        entry.future.set_result(ConfirmationResult(decision, explanation))
        log.debug("Resolved confirmation %s: %s", command_id, decision.value)
        return True

    def reject(self, command_id: str, reason: str = "rejected") -> bool:
        """Withdraw a pending confirmation. Returns False for unknown or settled ids."""
        entry = self._pending.pop(command_id, None)
        if entry is None:
            log.debug("Nothing to reject for %s", command_id)
            return False
        return self._settle_rejected(entry, ConfirmationRejected(command_id, reason))

    def clear_all_for_session(
        self, matcher: str | re.Pattern[str], reason: str = "session cleared"
    ) -> int:
        """Reject every pending entry whose id starts with ``matcher``.

        A compiled pattern is matched with ``search`` instead of a prefix test.

        Returns:
            Number of entries rejected.
        """
        if isinstance(matcher, re.Pattern):
            keys = [k for k in self._pending if matcher.search(k)]
        else:
            keys = [k for k in self._pending if k.startswith(matcher)]

        cleared = 0
        for key in keys:
            if self.reject(key, reason):
                cleared += 1
        if cleared:
            log.info("Cleared %d pending confirmations for %s", cleared, getattr(matcher, "pattern", matcher))
        return cleared

    def clear(self, reason: str = "shutdown") -> int:
        """Reject everything. Used at process shutdown."""
        return self.clear_all_for_session("", reason)

    def _settle_rejected(self, entry: _Pending, error: ConfirmationError) -> bool:
        if entry.timer is not None:
            entry.timer.cancel()
        if entry.future.done():
            return False
        entry.future.set_exception(error)
        return True

    def _expire(self, command_id: str, future: asyncio.Future[ConfirmationResult]) -> None:
        entry = self._pending.get(command_id)
        # A stale timer from a superseded registration must not touch the new one
        if entry is None or entry.future is not future:
            return
        del self._pending[command_id]
        if not future.done():
            log.warning("Confirmation %s timed out", command_id)
            future.set_exception(ConfirmationTimeout(command_id, "timed out"))
