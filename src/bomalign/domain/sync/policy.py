"""Tuning knobs for sync runs: batching, retries, timeouts and the circuit breaker."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 0.5
DEFAULT_BACKOFF_CAP_SECONDS = 8.0
DEFAULT_BATCH_TIMEOUT_SECONDS = 30.0
DEFAULT_BREAKER_THRESHOLD = 0.5
DEFAULT_BREAKER_MIN_ITEMS = 20
DEFAULT_MAX_CONSECUTIVE_LOST_BATCHES = 5


@dataclass(frozen=True, slots=True)
class SyncPolicy:
    batch_size: int = DEFAULT_BATCH_SIZE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    backoff_cap_seconds: float = DEFAULT_BACKOFF_CAP_SECONDS
    batch_timeout_seconds: float = DEFAULT_BATCH_TIMEOUT_SECONDS
    breaker_threshold: float = DEFAULT_BREAKER_THRESHOLD
    breaker_min_items: int = DEFAULT_BREAKER_MIN_ITEMS
    max_consecutive_lost_batches: int = DEFAULT_MAX_CONSECUTIVE_LOST_BATCHES

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_base_seconds < 0 or self.backoff_cap_seconds < 0:
            raise ValueError("backoff durations must be >= 0")
        if self.batch_timeout_seconds <= 0:
            raise ValueError("batch_timeout_seconds must be > 0")
        if not 0 < self.breaker_threshold <= 1:
            raise ValueError("breaker_threshold must be in (0, 1]")
        if self.breaker_min_items < 1:
            raise ValueError("breaker_min_items must be >= 1")
        if self.max_consecutive_lost_batches < 1:
            raise ValueError("max_consecutive_lost_batches must be >= 1")

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based), doubling up to the cap."""

        return min(self.backoff_cap_seconds, self.backoff_base_seconds * 2 ** (attempt - 1))
