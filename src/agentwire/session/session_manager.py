"""Session and SessionManager implementations.

The SessionManager owns every live Session in the process. A Session pairs
an agent engine with its effective run configuration, the resume token of its
last run and an activity timestamp used for idle expiry.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import time
import uuid
from collections.abc import Callable
from typing import Any

from agentwire.config.schema import DEFAULT_SESSION_TTL
from agentwire.logging import get_logger
from agentwire.session.protocols import AgentEngine

log = get_logger("session")


class Session:
    """One conversation with one engine.

    Attributes:
        id: Client-chosen or generated session id.
        engine: The engine instance owned by this session.
        config: Effective run configuration (model, provider, instructions,
            approval_policy). Per-run overrides are applied on top of it and
            are not stored back.
        last_response_id: Resume token reported by the engine's last run.
        busy: True while a run is in flight; the sweeper skips busy sessions.
        attached: True while a stream (or the startup run) drives the session.
            Only one driver may attach at a time and the sweeper skips
            attached sessions.
    """

    def __init__(
        self,
        session_id: str,
        engine: AgentEngine,
        config: dict[str, Any],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.id = session_id
        self.engine = engine
        self.config = dict(config)
        self._clock = clock
        self.created_at = clock()
        self.last_activity = self.created_at
        self.last_response_id: str | None = None
        self.busy = False
        self.attached = False

    def touch(self) -> None:
        """Record activity now."""
        self.last_activity = self._clock()

    def idle_for(self) -> float:
        """Seconds since the last recorded activity."""
        return self._clock() - self.last_activity

    def __repr__(self) -> str:
        return f"Session({self.id!r}, busy={self.busy}, attached={self.attached})"


class SessionManager:
    """Registry of live sessions with idle-TTL eviction.

    Args:
        ttl_seconds: Idle time after which a session is destroyed by the sweeper.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SESSION_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def create_or_get(
        self,
        engine: AgentEngine,
        base_config: dict[str, Any],
        requested_id: str | None = None,
    ) -> Session:
        """Return the session for ``requested_id``, creating it if needed.

        An existing session keeps its own engine and config; ``engine`` and
        ``base_config`` are only used for a new session.
        """
        if requested_id is not None and requested_id in self._sessions:
            session = self._sessions[requested_id]
            session.touch()
            log.info("Reusing existing session %s", requested_id)
            return session

        session_id = requested_id or str(uuid.uuid4())
        session = Session(session_id, engine, base_config, clock=self._clock)
        self._sessions[session_id] = session
        log.info("Session created: %s", session_id)
        return session

    def get(self, session_id: str) -> Session | None:
        """Look up a session, refreshing its activity on a hit."""
        session = self._sessions.get(session_id)
        if session is not None:
            session.touch()
        return session

    async def destroy(self, session_id: str) -> bool:
        """Terminate the session's engine (if it can be) and forget the session.

        Idempotent. Returns True if a session was removed.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        terminate = getattr(session.engine, "terminate", None)
        if callable(terminate):
            try:
                result = terminate()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log.warning("Error terminating engine for session %s: %s", session_id, e)

        log.info("Session destroyed: %s", session_id)
        return True

    async def destroy_all(self) -> int:
        count = 0
        for session_id in list(self._sessions):
            if await self.destroy(session_id):
                count += 1
        return count

    async def sweep_expired(self) -> int:
        """Destroy every idle, unattached session older than the TTL. Returns the count."""
        expired = [
            session.id
            for session in self._sessions.values()
            if not session.busy
            and not session.attached
            and session.idle_for() > self.ttl_seconds
        ]
        cleaned = 0
        for session_id in expired:
            log.info("Cleaning up expired session: %s", session_id)
            if await self.destroy(session_id):
                cleaned += 1
        if cleaned:
            log.info("Cleaned up %d expired sessions", cleaned)
        return cleaned

    # -------------------------------------------------------------------------
    # Background sweeper
    # -------------------------------------------------------------------------

    def start_sweeper(self, interval: float | None = None) -> None:
        """Sweep on an interval; defaults to half the TTL."""
        if self._sweeper is not None:
            return
        period = interval if interval is not None else self.ttl_seconds / 2
        self._sweeper = asyncio.create_task(self._sweep_loop(period))

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        task, self._sweeper = self._sweeper, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_expired()
            except Exception:
                log.exception("Session sweep failed")
