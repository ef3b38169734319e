"""Layered merging for configuration cascades.

Used for the file/env config cascade and for resolving the effective settings
of a single agent run (per-run overrides > session settings > process defaults).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``override`` on top of ``base`` and return a new dict.

    Rules:
    - Nested mappings are merged recursively
    - Lists and scalars are replaced, never concatenated
    - ``None`` in ``override`` leaves the base value untouched
    """
    result = dict(base)

    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value

    return result


def merge_configs(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge layers in order; later layers win. Empty layers are skipped."""
    result: dict[str, Any] = {}
    for layer in layers:
        if layer:
            result = deep_merge(result, layer)
    return result
