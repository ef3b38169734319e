"""Headless run of the configured query at server start.

The run drives a server-owned session with no client attached: every frame
it produces goes to the callback sink and the observer hub, approvals follow
the startup approval policy, and a pull request is opened once it finishes.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from agentwire.logging import get_logger
from agentwire.protocol import FrameModel, UserMessageFrame
from agentwire.session import AgentWrapper, RunState, Session

if TYPE_CHECKING:
    from agentwire.config.schema import StartupRunConfig
    from agentwire.server.handler import StreamDependencies

log = get_logger("startup")


class StartupRun:
    """One autonomous run of ``settings.query``.

    Args:
        deps: Shared stream collaborators (registry, queue, sinks).
        settings: Query, session id and approval policy for the run.
    """

    def __init__(self, deps: StreamDependencies, settings: StartupRunConfig) -> None:
        self.deps = deps
        self.settings = settings
        self.session_id = settings.session_id or str(uuid.uuid4())
        self.exit_code: int | None = None

    async def emit(self, frame: FrameModel) -> None:
        log.debug("Startup run %s: %s", self.session_id, frame.type)
        self.deps.mirror(self.session_id, frame)

    async def run(self) -> int:
        """Run the query to completion. Returns 0 on success, 1 otherwise."""
        deps = self.deps
        config = {**deps.run_defaults, "approval_policy": self.settings.approval_policy}
        session = deps.sessions.create_or_get(deps.engine_factory(), config, self.session_id)
        session.attached = True
        wrapper = AgentWrapper(
            session,
            deps.confirmations,
            self.emit,
            defaults=deps.run_defaults,
            approval_timeout=deps.approval_timeout,
        )

        log.info("Starting headless run for session %s", self.session_id)
        try:
            task = await wrapper.handle_user_message(
                UserMessageFrame(session_id=self.session_id, content=self.settings.query or "")
            )
            await task
        finally:
            await self._release(session, wrapper)

        self.exit_code = 0 if wrapper.state is RunState.COMPLETED else 1
        log.info(
            "Headless run %s finished (%s, exit code %d)",
            self.session_id,
            wrapper.state.value,
            self.exit_code,
        )
        deps.mirror(self.session_id, {"type": "finished", "exitCode": self.exit_code})

        if deps.on_session_closed is not None:
            try:
                await deps.on_session_closed(self.session_id)
            except Exception:
                log.exception("Publishing headless run %s failed", self.session_id)
        return self.exit_code

    async def _release(self, session: Session, wrapper: AgentWrapper) -> None:
        await wrapper.cleanup()
        session.attached = False
        await self.deps.sessions.destroy(session.id)
