"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from agentwire.config import clear_secret_cache, reset_config

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)

# Environment variables read by the config loader
CONFIG_ENV_VARS = (
    "GITHUB_URL",
    "GIT_PROVIDER",
    "INITIAL_QUERY",
    "SESSION_ID",
    "AGENTWIRE_MODEL",
    "AGENTWIRE_APPROVAL_POLICY",
    "CALLBACK_URL",
    "HOST",
    "PORT",
    "AW_LOG",
)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch):
    """Keep the host environment and cached config out of every test."""
    for var in CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_config()
    clear_secret_cache()
    yield
    reset_config()
    clear_secret_cache()
