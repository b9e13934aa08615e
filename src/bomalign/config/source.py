"""Authoritative source configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int, require_env_vars
from .errors import ConfigurationError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy

SOURCE_URL_ENV = "AUTHORITATIVE_SOURCE_URL"
SOURCE_TOKEN_ENV = "AUTHORITATIVE_SOURCE_TOKEN"
SOURCE_TIMEOUT_ENV = "AUTHORITATIVE_SOURCE_TIMEOUT"
SOURCE_RATE_LIMIT_ENV = "AUTHORITATIVE_SOURCE_RATE_LIMIT"
SOURCE_CACHE_TTL_ENV = "AUTHORITATIVE_SOURCE_CACHE_TTL"

DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_CALLS_PER_SECOND = 5
ITEMS_PATH = "parts"


@dataclass(frozen=True, slots=True)
class AuthoritativeSourceConfig:
    """Connection settings for the authoritative parts API."""

    base_url: str
    token: str
    resilience: ResilienceConfig
    items_path: str = ITEMS_PATH


def is_cacheable_page(payload: object) -> bool:
    """Only complete item pages are cached; error bodies never are."""

    return isinstance(payload, dict) and "items" in payload and "error" not in payload


def _cache_config(ttl_seconds: float) -> CacheConfig | None:
    if ttl_seconds <= 0:
        return None
    return CacheConfig(default_ttl_seconds=ttl_seconds, should_cache=is_cacheable_page)


def get_source_config(*, resilience: ResilienceConfig | None = None) -> AuthoritativeSourceConfig:
    values = require_env_vars((SOURCE_URL_ENV, SOURCE_TOKEN_ENV))
    base_url = values[SOURCE_URL_ENV].rstrip("/") + "/"
    if not base_url.startswith(("http://", "https://")):
        raise ConfigurationError(f"{SOURCE_URL_ENV} must be an http(s) URL, got {base_url!r}")

    timeout = env_float(SOURCE_TIMEOUT_ENV, DEFAULT_TIMEOUT_SECONDS)
    calls_per_second = env_int(SOURCE_RATE_LIMIT_ENV, DEFAULT_CALLS_PER_SECOND)
    if timeout <= 0 or calls_per_second < 1:
        raise ConfigurationError(
            f"{SOURCE_TIMEOUT_ENV} must be > 0 and {SOURCE_RATE_LIMIT_ENV} must be >= 1"
        )

    return AuthoritativeSourceConfig(
        base_url=base_url,
        token=values[SOURCE_TOKEN_ENV],
        resilience=resilience
        or ResilienceConfig(
            name="authoritative-source",
            base_url=base_url,
            timeout_seconds=timeout,
            retry=RetryPolicy(),
            ratelimit=RateLimit(max_calls=calls_per_second),
            cache=_cache_config(env_float(SOURCE_CACHE_TTL_ENV, 0.0)),
            default_headers={"Accept": "application/json"},
        ),
    )
