"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
- Startup validation of required inputs
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, TypeVar

import yaml

from agentwire.config.merge import merge_configs
from agentwire.config.paths import get_config_paths
from agentwire.config.schema import (
    CallbackConfig,
    Config,
    EngineConfig,
    LoggingConfig,
    RepoConfig,
    ServerConfig,
    SessionConfig,
    StartupRunConfig,
)
from agentwire.config.secrets import fetch_secret

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("agentwire.config")

_cached_config: Config | None = None

_T = TypeVar("_T")

APPROVAL_POLICIES = ("suggest", "auto-edit", "full-auto")


class ConfigError(Exception):
    """Fatal configuration problem detected at startup."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required configuration: {', '.join(missing)}")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict if missing or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


# env var -> (section, key, converter)
_ENV_MAP: dict[str, tuple[str, str, type]] = {
    "GITHUB_URL": ("repo", "url", str),
    "GIT_PROVIDER": ("repo", "provider", str),
    "INITIAL_QUERY": ("startup", "query", str),
    "SESSION_ID": ("startup", "session_id", str),
    "AGENTWIRE_MODEL": ("engine", "model", str),
    "AGENTWIRE_APPROVAL_POLICY": ("engine", "approval_policy", str),
    "CALLBACK_URL": ("callback", "url", str),
    "HOST": ("server", "host", str),
    "PORT": ("server", "port", int),
    "AW_LOG": ("logging", "file", str),
}


def env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Build a config dict from environment variables.

    Secrets are NOT read here; use fetch_secret() for those.
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}

    for var, (section, key, convert) in _ENV_MAP.items():
        raw = env.get(var)
        if not raw:
            continue
        try:
            value = convert(raw)
        except ValueError:
            _log.warning("Ignoring %s=%r: expected %s", var, raw, convert.__name__)
            continue
        overrides.setdefault(section, {})[key] = value

    return overrides


def _section(cls: type[_T], data: Any) -> _T:
    """Build a section dataclass from a dict, ignoring unknown keys."""
    if not isinstance(data, dict):
        return cls()
    names = {f.name for f in dataclasses.fields(cls)}  # type: ignore[arg-type]
    unknown = set(data) - names
    if unknown:
        _log.debug("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    return cls(**{k: v for k, v in data.items() if k in names})


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    known_keys = {"server", "session", "engine", "repo", "callback", "startup", "logging"}

    return Config(
        server=_section(ServerConfig, data.get("server")),
        session=_section(SessionConfig, data.get("session")),
        engine=_section(EngineConfig, data.get("engine")),
        repo=_section(RepoConfig, data.get("repo")),
        callback=_section(CallbackConfig, data.get("callback")),
        startup=_section(StartupRunConfig, data.get("startup")),
        logging=_section(LoggingConfig, data.get("logging")),
        extra={k: v for k, v in data.items() if k not in known_keys},
    )


def load_config(
    project_root: str | None = None,
    config_file: str | None = None,
    reload: bool = False,
) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit config file (--config)
    3. Project config ($project_root/.agentwire/config.yaml)
    4. User config (~/.config/agentwire/config.yaml or %APPDATA%)
    5. System config (/etc/agentwire/ or %PROGRAMDATA%)

    Only the plain global load (no project root, no explicit file) is cached.
    """
    global _cached_config

    cacheable = project_root is None and config_file is None
    if _cached_config is not None and not reload and cacheable:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for path in get_config_paths(project_root, config_file):
        layer = load_yaml_file(path)
        if layer:
            _log.debug("Loaded config from %s", path)
            layers.append(layer)

    layers.append(env_overrides())

    config = dict_to_config(merge_configs(*layers))

    if cacheable:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for testing."""
    global _cached_config
    _cached_config = None


def validate_config(config: Config) -> list[str]:
    """Return the names of required inputs that are missing or invalid.

    Required: repository URL, an initial prompt, and the engine API
    credential. The prompt is either the startup query (INITIAL_QUERY), which
    runs headless at boot, or configured engine instructions, which leave the
    server to client streams.
    """
    missing: list[str] = []
    if not config.repo.url:
        missing.append("repo.url (GITHUB_URL)")
    if not (config.startup.query or config.engine.instructions):
        missing.append("startup.query (INITIAL_QUERY) or engine.instructions")
    if not fetch_secret(config.engine.api_key_env):
        missing.append(config.engine.api_key_env)
    if config.engine.approval_policy not in APPROVAL_POLICIES:
        missing.append(f"engine.approval_policy (one of {', '.join(APPROVAL_POLICIES)})")
    if config.startup.approval_policy not in APPROVAL_POLICIES:
        missing.append(f"startup.approval_policy (one of {', '.join(APPROVAL_POLICIES)})")
    return missing


def require_valid_config(config: Config) -> Config:
    """Raise ConfigError unless every required input is present."""
    missing = validate_config(config)
    if missing:
        raise ConfigError(missing)
    return config
