"""Application configuration helpers."""

from __future__ import annotations

from .classification import DEFAULT_RULE_TABLE, get_rule_table, load_rule_table
from .env import env_float, env_int, optional_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError, RulesFileError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .source import AuthoritativeSourceConfig, get_source_config
from .storage import (
    DatabaseConfig,
    StorageConfig,
    get_database_config,
    get_http_cache_path,
    get_storage_config,
)
from .sync import SyncConfig, get_sync_config

__all__ = [
    "DEFAULT_RULE_TABLE",
    "AuthoritativeSourceConfig",
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "RulesFileError",
    "StorageConfig",
    "SyncConfig",
    "configure_logging",
    "env_float",
    "env_int",
    "get_database_config",
    "get_http_cache_path",
    "get_rule_table",
    "get_source_config",
    "get_storage_config",
    "get_sync_config",
    "load_rule_table",
    "optional_env_var",
    "require_env_vars",
]
