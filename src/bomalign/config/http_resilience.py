"""Resilience settings for outbound HTTP calls."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

ShouldCacheHook = Callable[[object], bool]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Transport-level retries for a single request.

    The sync orchestrator retries whole batches on top of this, so the
    defaults stay small. Only idempotent reads are retried.
    """

    total: int = 2
    backoff_factor: float = 0.25
    max_backoff_wait: float = 10.0
    retry_statuses: frozenset[int] = frozenset({429, 500, 502, 503, 504})


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float = 1.0


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Response cache; stored in the data directory unless ``in_memory``."""

    default_ttl_seconds: float
    should_cache: ShouldCacheHook | None = None
    in_memory: bool = False


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    cache: CacheConfig | None = None
    default_headers: Mapping[str, str] = field(default_factory=dict)
