"""Configuration error definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class ConfigurationError(RuntimeError):
    """Raised when configuration values are invalid."""


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration values are absent or blank."""


class RulesFileError(ConfigurationError):
    """Raised when a classification rules file cannot be read or validated."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Invalid classification rules in {path}: {reason}")
        self.path = path
        self.reason = reason
