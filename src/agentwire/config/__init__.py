"""Configuration management for agentwire.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/agentwire/ or %PROGRAMDATA%)
- User-level config (~/.config/agentwire/ or %APPDATA%)
- Project-level config (./.agentwire/)
- An explicit file passed with --config
- Environment variable overrides (highest priority)

Example usage:
    from agentwire.config import load_config, require_valid_config

    config = require_valid_config(load_config(config_file="deploy.yaml"))
    print(config.server.port)
"""

from agentwire.config.loader import (
    ConfigError,
    get_config,
    load_config,
    require_valid_config,
    reset_config,
    validate_config,
)
from agentwire.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
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
from agentwire.config.secrets import clear_secret_cache, fetch_secret

__all__ = [
    # Main API
    "Config",
    "ConfigError",
    "load_config",
    "get_config",
    "reset_config",
    "validate_config",
    "require_valid_config",
    # Schema types
    "CallbackConfig",
    "EngineConfig",
    "LoggingConfig",
    "RepoConfig",
    "ServerConfig",
    "SessionConfig",
    "StartupRunConfig",
    # Secret management
    "fetch_secret",
    "clear_secret_cache",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
