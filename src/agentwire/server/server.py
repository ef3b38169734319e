"""AgentServer: process-wide state and uvicorn lifecycle."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import uvicorn

from agentwire.callback import CallbackSink
from agentwire.config import Config, fetch_secret
from agentwire.config.schema import EngineConfig
from agentwire.engine import CommandExecutor, LiteLLMEngine
from agentwire.logging import get_logger
from agentwire.repo import GitError, commit_push_and_open_pull_request
from agentwire.server.events import EventHub
from agentwire.server.handler import StreamDependencies
from agentwire.server.routes import create_app
from agentwire.server.startup import StartupRun
from agentwire.session import ConfirmationQueue, EngineFactory, SessionManager

log = get_logger("server")


def run_defaults(engine: EngineConfig) -> dict[str, Any]:
    """Process-wide run configuration from the engine section."""
    return {
        "model": engine.model,
        "provider": engine.provider,
        "instructions": engine.instructions,
        "approval_policy": engine.approval_policy,
    }


def default_engine_factory(config: Config, repo_dir: str | Path) -> EngineFactory:
    """Build LiteLLMEngine instances working in ``repo_dir``."""
    engine_config = config.engine
    api_key = fetch_secret(engine_config.api_key_env)

    def factory() -> LiteLLMEngine:
        executor = CommandExecutor(cwd=str(repo_dir), timeout=engine_config.command_timeout)
        return LiteLLMEngine(
            executor,
            api_key=api_key,
            api_base=engine_config.api_base,
            max_turns=engine_config.max_turns,
        )

    return factory


def build_callback_sink(config: Config) -> CallbackSink | None:
    if not config.callback.url:
        return None
    return CallbackSink(
        config.callback.url,
        secret=fetch_secret(config.callback.secret_env),
        timeout=config.callback.timeout,
    )


class AgentServer:
    """Owns the session registry, confirmation queue and the event sinks.

    Args:
        config: Loaded configuration.
        engine_factory: Builds one engine per new session.
        repo_dir: Cloned repository; enables publishing when a session ends.
        callback: Optional result sink.
        clock: Monotonic time source for session expiry.
    """

    def __init__(
        self,
        config: Config,
        engine_factory: EngineFactory,
        *,
        repo_dir: str | Path | None = None,
        callback: CallbackSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.repo_dir = Path(repo_dir) if repo_dir is not None else None
        self.callback = callback
        self.events = EventHub()
        self.sessions = SessionManager(config.session.ttl_seconds, clock=clock)
        self.confirmations = ConfirmationQueue(config.session.approval_timeout)

        publish = self.repo_dir is not None and config.repo.publish_on_close and config.repo.url
        self.deps = StreamDependencies(
            sessions=self.sessions,
            confirmations=self.confirmations,
            engine_factory=engine_factory,
            run_defaults=run_defaults(config.engine),
            approval_timeout=config.session.approval_timeout,
            callback=callback,
            events=self.events,
            on_session_closed=self.publish if publish else None,
        )
        self.startup_run = StartupRun(self.deps, config.startup) if config.startup.query else None
        self.exit_code = 0
        self.open_streams = 0
        self.started_at: float | None = None
        self._startup_task: asyncio.Task[None] | None = None
        self._uvicorn: uvicorn.Server | None = None
        self.app = create_app(self)

    @property
    def startup_task(self) -> asyncio.Task[None] | None:
        return self._startup_task

    def status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "sessions": len(self.sessions),
            "streams": self.open_streams,
            "observers": len(self.events),
            "pendingConfirmations": len(self.confirmations),
            "uptime": time.time() - self.started_at if self.started_at else 0,
        }
        if self.startup_run is not None:
            status["startupRun"] = {
                "sessionId": self.startup_run.session_id,
                "exitCode": self.startup_run.exit_code,
            }
        return status

    async def startup(self) -> None:
        self.started_at = time.time()
        self.sessions.start_sweeper()
        if self.startup_run is not None:
            self._startup_task = asyncio.create_task(self._run_startup(), name="startup-run")
        log.info("Agent server ready (stream path %s)", self.config.server.stream_path)

    async def _run_startup(self) -> None:
        assert self.startup_run is not None
        try:
            self.exit_code = await self.startup_run.run()
        except Exception:
            log.exception("Headless run %s crashed", self.startup_run.session_id)
            self.exit_code = 1
        if self.config.startup.exit_when_done:
            log.info("Headless run done; shutting down with exit code %d", self.exit_code)
            if self._uvicorn is not None:
                self._uvicorn.should_exit = True

    async def shutdown(self) -> None:
        task = self._startup_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
            self.exit_code = 1
        await self.sessions.stop_sweeper()
        destroyed = await self.sessions.destroy_all()
        cleared = self.confirmations.clear()
        self.events.close()
        if self.callback is not None:
            await self.callback.aclose()
        log.info("Agent server stopped (%d sessions destroyed, %d confirmations cleared)", destroyed, cleared)

    async def publish(self, session_id: str) -> None:
        """Open a pull request for the session's changes, if there are any."""
        if self.repo_dir is None or not self.config.repo.url:
            return
        repo = self.config.repo
        try:
            pr = await commit_push_and_open_pull_request(
                self.repo_dir,
                session_id,
                repo_url=repo.url,
                token=fetch_secret(repo.access_token_env),
                provider=repo.provider,
            )
        except (GitError, httpx.HTTPError, KeyError) as e:
            log.error("Publishing session %s failed: %s", session_id, e)
            return

        if pr is not None:
            self.deps.mirror(session_id, {"type": "pull_request", "url": pr.url, "number": pr.number})

    async def serve(self) -> int:
        """Serve until interrupted, or until the headless run ends. Returns the exit code."""
        settings = self.config.server
        config = uvicorn.Config(
            self.app,
            host=settings.host,
            port=settings.port,
            log_level="warning",
            access_log=False,
            timeout_graceful_shutdown=5,
        )
        self._uvicorn = uvicorn.Server(config)
        log.info("Listening on http://%s:%d%s", settings.host, settings.port, settings.stream_path)
        await self._uvicorn.serve()
        return self.exit_code
