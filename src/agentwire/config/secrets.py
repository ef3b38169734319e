"""Secret lookup for agentwire.

API keys, the GitHub token and the callback secret never live in config.yaml.
They are read from the environment first, then from a ``.env.secrets`` file
parsed with python-dotenv and cached.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"


@lru_cache(maxsize=4)
def _load_secrets(secrets_path: Path | None = None) -> dict[str, str | None]:
    """Load and cache a secrets file; missing files yield an empty dict."""
    path = secrets_path or Path(SECRETS_FILE)
    if path.exists():
        return dotenv_values(path)
    return {}


def fetch_secret(
    key: str,
    default: str | None = None,
    secrets_path: Path | None = None,
) -> str | None:
    """Fetch a secret from the environment or ``.env.secrets``.

    Environment variables win so tests can use ``monkeypatch`` and deployments
    can inject secrets without touching files.

    Example:
        >>> fetch_secret("OPENAI_API_KEY")
        'sk-...'
    """
    value = os.environ.get(key)
    if value:
        return value

    secrets = _load_secrets(secrets_path)
    found = secrets.get(key)
    if found:
        return found

    return default


def clear_secret_cache() -> None:
    """Forget cached ``.env.secrets`` contents."""
    _load_secrets.cache_clear()
