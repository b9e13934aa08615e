"""Environment variable loaders for configuration."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from .errors import ConfigurationError, MissingConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


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
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_number[N: (int, float)](name: str, default: N, parse: Callable[[str], N]) -> N:
    raw = optional_env_var(name)
    if raw is None:
        return default
    try:
        return parse(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def env_int(name: str, default: int) -> int:
    """Integer environment variable with a default for unset/blank values."""

    return _env_number(name, default, int)


def env_float(name: str, default: float) -> float:
    """Float environment variable with a default for unset/blank values."""

    return _env_number(name, default, float)
