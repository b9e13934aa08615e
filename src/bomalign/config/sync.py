"""Synchronization defaults for sync runs and record listings."""

from __future__ import annotations

from dataclasses import dataclass

from bomalign.domain.queries import MAX_PAGE_SIZE
from bomalign.domain.sync.policy import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_CAP_SECONDS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_BATCH_TIMEOUT_SECONDS,
    DEFAULT_BREAKER_MIN_ITEMS,
    DEFAULT_BREAKER_THRESHOLD,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_CONSECUTIVE_LOST_BATCHES,
    SyncPolicy,
)

from .env import env_float, env_int
from .errors import ConfigurationError

ENV_PREFIX = "BOMALIGN_SYNC_"


@dataclass(frozen=True, slots=True)
class SyncConfig:
    policy: SyncPolicy
    max_page_size: int = MAX_PAGE_SIZE


def get_sync_config() -> SyncConfig:
    """Build sync tuning from ``BOMALIGN_SYNC_*`` variables, falling back to defaults."""

    try:
        policy = SyncPolicy(
            batch_size=env_int(f"{ENV_PREFIX}BATCH_SIZE", DEFAULT_BATCH_SIZE),
            max_attempts=env_int(f"{ENV_PREFIX}MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            backoff_base_seconds=env_float(
                f"{ENV_PREFIX}BACKOFF_BASE", DEFAULT_BACKOFF_BASE_SECONDS
            ),
            backoff_cap_seconds=env_float(f"{ENV_PREFIX}BACKOFF_CAP", DEFAULT_BACKOFF_CAP_SECONDS),
            batch_timeout_seconds=env_float(
                f"{ENV_PREFIX}BATCH_TIMEOUT", DEFAULT_BATCH_TIMEOUT_SECONDS
            ),
            breaker_threshold=env_float(
                f"{ENV_PREFIX}BREAKER_THRESHOLD", DEFAULT_BREAKER_THRESHOLD
            ),
            breaker_min_items=env_int(f"{ENV_PREFIX}BREAKER_MIN_ITEMS", DEFAULT_BREAKER_MIN_ITEMS),
            max_consecutive_lost_batches=env_int(
                f"{ENV_PREFIX}MAX_LOST_BATCHES", DEFAULT_MAX_CONSECUTIVE_LOST_BATCHES
            ),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid sync configuration: {exc}") from exc

    max_page_size = env_int(f"{ENV_PREFIX}MAX_PAGE_SIZE", MAX_PAGE_SIZE)
    if max_page_size < 1:
        raise ConfigurationError(f"{ENV_PREFIX}MAX_PAGE_SIZE must be >= 1")
    return SyncConfig(policy=policy, max_page_size=max_page_size)
