"""Configuration schema dataclasses for agentwire.

Defines the structure of configuration at all levels (system, user, project,
explicit file, environment). All fields have defaults so partial configs merge
together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_STREAM_PATH = "/agent/stream"
DEFAULT_EVENTS_PATH = "/stream"
DEFAULT_HEARTBEAT_INTERVAL = 30.0  # seconds
DEFAULT_MAX_FRAME_SIZE = 10 * 1024 * 1024  # 10 MB
DEFAULT_APPROVAL_TIMEOUT = 5 * 60.0  # seconds
DEFAULT_SESSION_TTL = 24 * 60 * 60.0  # seconds


@dataclass
class ServerConfig:
    """Network endpoint and stream transport settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    stream_path: str = DEFAULT_STREAM_PATH
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE
    write_high_water: int = 64  # Outbound frames queued before write() reports backed up
    events_path: str = DEFAULT_EVENTS_PATH  # Read-only SSE observer route


@dataclass
class SessionConfig:
    """Session registry and approval settings."""

    ttl_seconds: float = DEFAULT_SESSION_TTL  # Idle sessions older than this are swept
    approval_timeout: float = DEFAULT_APPROVAL_TIMEOUT  # Per command_prompt deadline


@dataclass
class EngineConfig:
    """Process-wide defaults for agent runs.

    `model` and `approval_policy` can be overridden per run by a user_message;
    everything else is inherited.

    Example config.yaml:
        engine:
          model: gpt-4o
          provider: openai
          approval_policy: suggest
          instructions: "You maintain this repository; keep changes small"
    """

    model: str = "gpt-4o"
    provider: str = "openai"
    instructions: str | None = None
    approval_policy: str = "suggest"  # "suggest", "auto-edit", "full-auto"
    api_key_env: str = "OPENAI_API_KEY"  # Secret name looked up via fetch_secret()
    api_base: str | None = None
    max_turns: int = 20
    command_timeout: float = 120.0


@dataclass
class RepoConfig:
    """Repository acquisition and publication settings."""

    url: str | None = None
    workspace: str = "/workspace"
    access_token_env: str = "GITHUB_ACCESS_TOKEN"
    provider: str = "github"
    publish_on_close: bool = True


@dataclass
class CallbackConfig:
    """HTTP result sink settings."""

    url: str | None = None
    secret_env: str = "INTERNAL_DOCKER_SHARED_SECRET"
    timeout: float = 10.0


@dataclass
class StartupRunConfig:
    """Headless run started when the server boots.

    With a query set, the server runs it on its own session without waiting
    for a client, opens a pull request when it finishes and, by default,
    shuts down with the run's exit code. Without a query the server only
    serves client streams.
    """

    query: str | None = None
    session_id: str | None = None  # Generated when unset
    approval_policy: str = "full-auto"
    exit_when_done: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    repo: RepoConfig = field(default_factory=RepoConfig)
    callback: CallbackConfig = field(default_factory=CallbackConfig)
    startup: StartupRunConfig = field(default_factory=StartupRunConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level sections are kept for extensions
    extra: dict[str, Any] = field(default_factory=dict)
