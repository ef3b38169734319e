"""Per-connection control loop.

A StreamHandler binds one StreamTransport to a session and its AgentWrapper,
dispatches inbound frames, and guarantees that the stream ends with exactly
one terminate frame whatever path closes it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agentwire.logging import get_logger
from agentwire.protocol import (
    ApproveFrame,
    CancelFrame,
    ErrorCode,
    ErrorFrame,
    FrameModel,
    HeartbeatFrame,
    StatusFrame,
    TerminateFrame,
    UserMessageFrame,
)
from agentwire.session import (
    AgentWrapper,
    ConfirmationQueue,
    EngineFactory,
    Session,
    SessionManager,
)

if TYPE_CHECKING:
    from agentwire.callback import CallbackSink
    from agentwire.server.events import EventHub
    from agentwire.transport import StreamTransport

log = get_logger("handler")

# async (session_id) -> None, run after a bound session's stream closes
SessionClosedHook = Callable[[str], Awaitable[None]]


@dataclass
class StreamDependencies:
    """Process-wide collaborators shared by every connection."""

    sessions: SessionManager
    confirmations: ConfirmationQueue
    engine_factory: EngineFactory
    run_defaults: dict[str, Any] = field(default_factory=dict)
    approval_timeout: float | None = None
    callback: CallbackSink | None = None
    events: EventHub | None = None
    on_session_closed: SessionClosedHook | None = None

    def mirror(self, session_id: str, event: FrameModel | dict[str, Any]) -> None:
        """Copy one event to the callback sink and the observer hub."""
        if self.callback is not None:
            self.callback.publish(session_id, event)
        if self.events is not None:
            self.events.publish(session_id, event)


class StreamHandler:
    """Control loop for one accepted stream."""

    def __init__(self, transport: StreamTransport, deps: StreamDependencies) -> None:
        self.transport = transport
        self.deps = deps
        self.session: Session | None = None
        self.wrapper: AgentWrapper | None = None
        self.frames_received = 0

    @property
    def session_id(self) -> str | None:
        return self.session.id if self.session is not None else None

    async def emit(self, frame: FrameModel) -> None:
        """Send a frame to the client and mirror it to observers."""
        await self.transport.send(frame)
        if self.session is not None:
            self.deps.mirror(self.session.id, frame)

    async def run(self) -> None:
        """Serve the stream until either side closes it."""
        self.transport.start()
        reason = "stream closed"
        frames = self.transport.read_frames()
        try:
            async for frame in frames:
                self.frames_received += 1
                if isinstance(frame, HeartbeatFrame):
                    continue
                try:
                    fatal = await self._dispatch(frame)
                except Exception as e:
                    log.exception("Error processing %s frame", frame.type)
                    await self.emit(
                        ErrorFrame(
                            message=f"Error processing {frame.type} frame: {e}",
                            code=ErrorCode.FRAME_PROCESSING_ERROR,
                        )
                    )
                    continue
                if fatal is not None:
                    reason = fatal
                    break

            if self.transport.failure is not None and reason == "stream closed":
                reason = "transport error"
        except asyncio.CancelledError:
            reason = "server shutdown"
            raise
        finally:
            await frames.aclose()
            await self._shutdown(reason)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def _dispatch(self, frame: Any) -> str | None:
        """Handle one frame. Returns a terminate reason if the stream must end."""
        if isinstance(frame, UserMessageFrame):
            return await self._on_user_message(frame)

        if self.session is None or self.wrapper is None:
            await self.emit(
                ErrorFrame(
                    message=f"Session not initialized; send a user_message before {frame.type}",
                    code=ErrorCode.SESSION_NOT_INITIALIZED,
                )
            )
            return None

        if isinstance(frame, (ApproveFrame, CancelFrame)):
            if frame.session_id != self.session.id:
                await self._session_mismatch(frame.type, frame.session_id)
                return None
            self.session.touch()
            if isinstance(frame, ApproveFrame):
                self.wrapper.handle_approve(frame)
            else:
                await self.wrapper.handle_cancel(frame)
            return None

        log.warning("Ignoring unexpected %s frame", getattr(frame, "type", type(frame).__name__))
        return None

    async def _on_user_message(self, frame: UserMessageFrame) -> str | None:
        if self.session is None:
            if not frame.session_id:
                await self.transport.send(
                    ErrorFrame(
                        message="sessionId is required on the first user_message",
                        code=ErrorCode.SESSION_ID_REQUIRED,
                    )
                )
                return "session id required"
            if not self._bind(frame.session_id):
                await self.transport.send(
                    ErrorFrame(
                        message=f"Session {frame.session_id} is attached to another stream",
                        code=ErrorCode.SESSION_IN_USE,
                        details={"sessionId": frame.session_id},
                    )
                )
                return "session in use"
            await self.emit(StatusFrame(message=f"session {frame.session_id} initialized"))
        elif frame.session_id and frame.session_id != self.session.id:
            await self._session_mismatch(frame.type, frame.session_id)
            return None

        assert self.wrapper is not None
        await self.wrapper.handle_user_message(frame)
        return None

    def _bind(self, session_id: str) -> bool:
        """Attach this stream to the session. False if another driver holds it."""
        deps = self.deps
        session = deps.sessions.get(session_id)
        if session is not None and session.attached:
            log.warning("Refusing stream for session %s: already attached", session_id)
            return False
        if session is None:
            session = deps.sessions.create_or_get(
                deps.engine_factory(), deps.run_defaults, session_id
            )
        session.attached = True
        self.session = session
        self.wrapper = AgentWrapper(
            session,
            deps.confirmations,
            self.emit,
            defaults=deps.run_defaults,
            approval_timeout=deps.approval_timeout,
        )
        log.info("Stream bound to session %s", session_id)
        return True

    async def _session_mismatch(self, frame_type: str, session_id: str | None) -> None:
        log.warning(
            "Rejecting %s for session %s on stream bound to %s",
            frame_type,
            session_id,
            self.session_id,
        )
        await self.emit(
            ErrorFrame(
                message=f"Session mismatch: stream is bound to {self.session_id}",
                code=ErrorCode.SESSION_ID_MISMATCH,
                details={"sessionId": session_id},
            )
        )

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def _shutdown(self, reason: str) -> None:
        await self.transport.stop_heartbeat()

        if self.wrapper is not None:
            try:
                await self.wrapper.cleanup()
            except Exception:
                log.exception("Wrapper cleanup failed for %s", self.session_id)

        session_id = self.session_id
        if self.session is not None:
            self.session.attached = False
        if session_id is not None:
            await self.deps.sessions.destroy(session_id)
            if self.deps.on_session_closed is not None:
                try:
                    await self.deps.on_session_closed(session_id)
                except Exception:
                    log.exception("Session close hook failed for %s", session_id)

        self.transport.terminate(reason)
        if session_id is not None:
            self.deps.mirror(session_id, TerminateFrame(reason=reason))
        await self.transport.close()
        log.info("Stream closed for session %s: %s", session_id, reason)
