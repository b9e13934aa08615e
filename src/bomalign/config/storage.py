"""Where bomalign keeps its files.

Everything lives under one data directory: the reconciliation database, the
authoritative-source page cache and, optionally, a classification rules file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import optional_env_var

APP_DIR_NAME: Final[str] = "bomalign"
DATA_DIR_ENV: Final[str] = "BOMALIGN_DATA_DIR"
DATABASE_URI_ENV: Final[str] = "DATABASE_URI"
DEFAULT_DB_FILENAME: Final[str] = "bomalign.db"
HTTP_CACHE_FILENAME: Final[str] = "http_cache.db"
RULES_FILENAME: Final[str] = "classification_rules.toml"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_uri_override: str | None = None

    def _directory(self) -> Path:
        directory = self.data_dir.expanduser().resolve()
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    @property
    def database(self) -> DatabaseConfig:
        if self.database_uri_override:
            return DatabaseConfig(uri=self.database_uri_override)
        return DatabaseConfig(uri=f"sqlite+pysqlite:///{self._directory() / DEFAULT_DB_FILENAME}")

    @property
    def http_cache_path(self) -> Path:
        return self._directory() / HTTP_CACHE_FILENAME

    @property
    def rules_path(self) -> Path:
        # not created on demand; the file is optional
        return self.data_dir.expanduser().resolve() / RULES_FILENAME


def _platform_data_dir() -> Path:
    if os.name == "nt":
        local = os.getenv("LOCALAPPDATA")
        root = Path(local) if local else Path.home() / "AppData" / "Local"
    else:
        xdg = os.getenv("XDG_DATA_HOME")
        root = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return root / APP_DIR_NAME


def get_storage_config() -> StorageConfig:
    configured = optional_env_var(DATA_DIR_ENV)
    return StorageConfig(
        data_dir=Path(configured) if configured else _platform_data_dir(),
        database_uri_override=optional_env_var(DATABASE_URI_ENV),
    )


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    return (storage or get_storage_config()).database


def get_http_cache_path(*, storage: StorageConfig | None = None) -> Path:
    return (storage or get_storage_config()).http_cache_path
