"""Environment variable loaders for configuration."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from .errors import MissingConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence


def require_env_vars(names: Sequence[str]) -> dict[str, str]:
    """Return the given environment variables or raise if any are missing/blank."""

    missing: list[str] = []
    values: dict[str, str] = {}
    for name in names:
        value = os.getenv(name)
        if value is None or not value.strip():
            missing.append(name)
            continue
        values[name] = value.strip()

    if missing:
        missing_list = ", ".join(sorted(missing))
        raise MissingConfigurationError(f"Missing configuration for: {missing_list}")

    return values


def optional_env_var(name: str) -> str | None:
    """Return an optional environment variable, treating blank values as absent."""

    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def require_non_blank(name: str, value: str | None) -> str:
    """Validate a constructor argument that must carry a non-blank identifier."""

    if value is None or not value.strip():
        raise MissingConfigurationError(f"{name} is missing or empty")
    return value.strip()
