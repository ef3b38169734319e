"""Tests for the configuration module."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from agentwire.config import (
    Config,
    ConfigError,
    clear_secret_cache,
    fetch_secret,
    get_config,
    load_config,
    require_valid_config,
    reset_config,
    validate_config,
)
from agentwire.config.loader import env_overrides
from agentwire.config.merge import deep_merge, merge_configs
from agentwire.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)


class TestDeepMerge:
    """Test the deep merge algorithm."""

    def test_simple_override(self) -> None:
        """Test that override values replace base values."""
        base = {"a": 1, "b": 2}
        override = {"b": 3, "c": 4}
        result = deep_merge(base, override)
        assert result == {"a": 1, "b": 3, "c": 4}

    def test_nested_merge(self) -> None:
        """Test that nested dicts are recursively merged."""
        base = {"engine": {"model": "gpt-4o", "max_turns": 20}}
        override = {"engine": {"max_turns": 5}}
        result = deep_merge(base, override)
        assert result["engine"]["model"] == "gpt-4o"
        assert result["engine"]["max_turns"] == 5

    def test_none_does_not_override(self) -> None:
        """Test that None values in override don't replace base values."""
        result = deep_merge({"a": 1}, {"a": None})
        assert result["a"] == 1

    def test_list_replaced_not_merged(self) -> None:
        """Test that lists are replaced, not concatenated."""
        result = deep_merge({"items": [1, 2, 3]}, {"items": [4, 5]})
        assert result["items"] == [4, 5]

    def test_inputs_not_mutated(self) -> None:
        """Merging returns a new dict and leaves its inputs alone."""
        base = {"a": {"b": 1}}
        deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}

    def test_merge_configs_multiple(self) -> None:
        """Test merging multiple configs in order."""
        result = merge_configs({"a": 1, "b": 2}, None, {"b": 3}, {}, {"c": 4})
        assert result == {"a": 1, "b": 3, "c": 4}


class TestConfigPaths:
    """Test platform-aware path resolution."""

    def test_windows_system_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test system config path on Windows."""
        monkeypatch.setattr(sys, "platform", "win32")
        monkeypatch.setenv("PROGRAMDATA", "C:\\ProgramData")

        path = get_system_config_path()
        assert path is not None
        assert "ProgramData" in str(path)
        assert "agentwire" in str(path)

    def test_unix_system_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test system config path on Unix."""
        monkeypatch.setattr(sys, "platform", "linux")
        assert get_system_config_path() == Path("/etc/agentwire/config.yaml")

    def test_unix_user_path_xdg(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test user config path respects XDG_CONFIG_HOME."""
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setenv("XDG_CONFIG_HOME", "/home/test/.config-custom")

        path = get_user_config_path()
        assert path == Path("/home/test/.config-custom/agentwire/config.yaml")

    def test_project_config_path(self) -> None:
        """Test project config path construction."""
        path = get_project_config_path("/home/user/myproject")
        assert path == Path("/home/user/myproject/.agentwire/config.yaml")

    def test_get_config_paths_order(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Paths run system, user, project, explicit."""
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)

        paths = get_config_paths(project_root="/project", explicit="/deploy/agent.yaml")
        assert len(paths) == 4
        assert "etc" in paths[0].parts
        assert "project" in paths[2].parts
        assert paths[3] == Path("/deploy/agent.yaml")


class TestConfigLoading:
    """Test configuration loading."""

    @pytest.fixture
    def temp_config_dir(self, tmp_path: Path) -> Path:
        """Create a temporary project config directory."""
        config_dir = tmp_path / ".agentwire"
        config_dir.mkdir()
        return config_dir

    def test_load_yaml_config(self, temp_config_dir: Path) -> None:
        """Test loading a valid YAML config file."""
        (temp_config_dir / "config.yaml").write_text(
            """
server:
  port: 9000
engine:
  model: claude-3-5-sonnet
  provider: anthropic
session:
  approval_timeout: 30
"""
        )
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.server.port == 9000
        assert config.server.host == "127.0.0.1"
        assert config.engine.model == "claude-3-5-sonnet"
        assert config.engine.provider == "anthropic"
        assert config.session.approval_timeout == 30

    def test_explicit_file_wins_over_project(self, temp_config_dir: Path, tmp_path: Path) -> None:
        """The --config file overrides the project config."""
        (temp_config_dir / "config.yaml").write_text("server:\n  port: 9000\n")
        explicit = tmp_path / "deploy.yaml"
        explicit.write_text("server:\n  port: 9100\n")

        config = load_config(project_root=str(tmp_path), config_file=str(explicit))
        assert config.server.port == 9100

    def test_env_overrides_files(
        self, temp_config_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Environment variables beat every config file."""
        (temp_config_dir / "config.yaml").write_text("repo:\n  url: https://github.com/a/b\n")
        monkeypatch.setenv("GITHUB_URL", "https://github.com/c/d")
        monkeypatch.setenv("INITIAL_QUERY", "Fix the tests")
        monkeypatch.setenv("SESSION_ID", "job-42")
        monkeypatch.setenv("PORT", "7000")

        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.repo.url == "https://github.com/c/d"
        assert config.startup.query == "Fix the tests"
        assert config.startup.session_id == "job-42"
        assert config.server.port == 7000

    def test_bad_env_value_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        """A non-numeric PORT is skipped with a warning."""
        overrides = env_overrides({"PORT": "eighty", "HOST": "0.0.0.0"})
        assert overrides == {"server": {"host": "0.0.0.0"}}
        assert "PORT" in caplog.text

    def test_invalid_yaml_uses_defaults(self, temp_config_dir: Path) -> None:
        """Test that invalid YAML falls back to defaults."""
        (temp_config_dir / "config.yaml").write_text("invalid: yaml: :")
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.server.port == 8080

    def test_unknown_keys_ignored(self, temp_config_dir: Path) -> None:
        """Unknown keys inside a section do not break loading."""
        (temp_config_dir / "config.yaml").write_text("server:\n  port: 9000\n  bogus: 1\n")
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.server.port == 9000

    def test_extra_fields_preserved(self, temp_config_dir: Path) -> None:
        """Test that unknown top-level sections are preserved in extra."""
        (temp_config_dir / "config.yaml").write_text("custom:\n  field: value\n")
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.extra["custom"]["field"] == "value"

    def test_aw_log_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """AW_LOG sets the log file."""
        monkeypatch.setenv("AW_LOG", "/tmp/agentwire.log")
        assert load_config().logging.file == "/tmp/agentwire.log"


class TestConfigCaching:
    """Test config caching behavior."""

    def test_get_config_caches(self) -> None:
        """Test that get_config returns cached config."""
        assert get_config() is get_config()

    def test_reset_clears_cache(self) -> None:
        """Test that reset_config clears the cache."""
        config1 = get_config()
        reset_config()
        assert get_config() is not config1

    def test_project_config_not_cached(self, tmp_path: Path) -> None:
        """Test that project-specific config is not globally cached."""
        project_config = load_config(project_root=str(tmp_path))
        assert project_config is not get_config()


class TestSecrets:
    """Test secret lookup."""

    def test_environment_first(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Environment variables win over the secrets file."""
        secrets = tmp_path / ".env.secrets"
        secrets.write_text("OPENAI_API_KEY=from-file\n")
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        assert fetch_secret("OPENAI_API_KEY", secrets_path=secrets) == "from-env"

    def test_secrets_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Values are read from the dotenv secrets file."""
        monkeypatch.delenv("AGENTWIRE_TEST_SECRET", raising=False)
        secrets = tmp_path / ".env.secrets"
        secrets.write_text("AGENTWIRE_TEST_SECRET=abc123\n")
        clear_secret_cache()
        assert fetch_secret("AGENTWIRE_TEST_SECRET", secrets_path=secrets) == "abc123"

    def test_default(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Missing secrets return the default."""
        monkeypatch.delenv("AGENTWIRE_MISSING", raising=False)
        missing = tmp_path / "nope"
        assert fetch_secret("AGENTWIRE_MISSING", "dflt", secrets_path=missing) == "dflt"


class TestValidation:
    """Test startup validation of required inputs."""

    def test_all_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A default config lacks every required input."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.chdir("/")
        missing = validate_config(Config())
        assert len(missing) == 3
        assert any("repo.url" in m for m in missing)
        assert any("INITIAL_QUERY" in m for m in missing)
        assert "OPENAI_API_KEY" in missing

    def test_valid(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A complete config passes."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = Config()
        config.repo.url = "https://github.com/a/b"
        config.startup.query = "Fix it"
        assert validate_config(config) == []
        assert require_valid_config(config) is config

    def test_bad_approval_policy(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unknown approval policies are rejected."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = Config()
        config.repo.url = "https://github.com/a/b"
        config.startup.query = "Fix it"
        config.engine.approval_policy = "yolo"

        with pytest.raises(ConfigError) as exc_info:
            require_valid_config(config)
        assert "approval_policy" in str(exc_info.value)

    def test_instructions_stand_in_for_query(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Configured instructions satisfy the prompt requirement without a startup run."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = Config()
        config.repo.url = "https://github.com/a/b"
        config.engine.instructions = "You maintain this repository"
        assert config.startup.query is None
        assert validate_config(config) == []

    def test_bad_startup_policy(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The startup run's approval policy is validated too."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = Config()
        config.repo.url = "https://github.com/a/b"
        config.startup.approval_policy = "never"
        assert any("startup.approval_policy" in m for m in validate_config(config))
