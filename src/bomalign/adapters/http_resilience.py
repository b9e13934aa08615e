"""Async HTTP client for paged source APIs.

A request passes, from the outside in, through an optional aiolimiter rate
limit, an optional hishel response cache and an httpx-retries transport.
"""

from __future__ import annotations

import json
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from aiolimiter import AsyncLimiter
from hishel import AsyncSqliteStorage, FilterPolicy
from hishel import Response as HishelResponse
from hishel._policies import BaseFilter
from hishel.httpx import AsyncCacheClient
from httpx_retries import Retry, RetryTransport

from bomalign.config.storage import get_http_cache_path

if TYPE_CHECKING:
    from types import TracebackType

    from httpx._types import HeaderTypes, QueryParamTypes

    from bomalign.config.http_resilience import (
        CacheConfig,
        ResilienceConfig,
        RetryPolicy,
        ShouldCacheHook,
    )

log = getLogger(__name__)

_IDEMPOTENT_METHODS = ("GET", "HEAD")


def build_retry(policy: RetryPolicy) -> Retry:
    return Retry(
        total=policy.total,
        backoff_factor=policy.backoff_factor,
        max_backoff_wait=policy.max_backoff_wait,
        status_forcelist=sorted(policy.retry_statuses),
        allowed_methods=_IDEMPOTENT_METHODS,
    )


class _JsonBodyFilter(BaseFilter[HishelResponse]):
    """Stores a response only when its decoded JSON body passes ``predicate``."""

    def __init__(self, predicate: ShouldCacheHook) -> None:
        self._predicate = predicate

    def needs_body(self) -> bool:
        return True

    def apply(self, item: HishelResponse, body: bytes | None) -> bool:  # noqa: ARG002
        if not body:
            return False
        try:
            payload = json.loads(body)
        except ValueError:
            return False
        return bool(self._predicate(payload))


def _cache_storage(config: CacheConfig) -> AsyncSqliteStorage:
    database_path = ":memory:" if config.in_memory else str(get_http_cache_path())
    return AsyncSqliteStorage(database_path=database_path, default_ttl=config.default_ttl_seconds)


def _cache_policy(config: CacheConfig) -> FilterPolicy | None:
    if config.should_cache is None:
        return None
    return FilterPolicy(response_filters=[_JsonBodyFilter(config.should_cache)])


class ResilientClient:
    """Rate-limited, retrying and optionally caching wrapper over ``httpx``.

    ``transport`` replaces the network layer underneath the retries; tests
    pass an ``httpx.MockTransport`` there.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._limiter = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit is not None
            else None
        )
        retrying = RetryTransport(transport=transport, retry=build_retry(config.retry))
        self._client = self._open(retrying)

    def _open(self, transport: RetryTransport) -> httpx.AsyncClient:
        config = self.config
        base_url = config.base_url or ""
        headers = dict(config.default_headers)
        if config.cache is None:
            return httpx.AsyncClient(
                base_url=base_url,
                headers=headers,
                timeout=config.timeout_seconds,
                transport=transport,
            )
        log.debug("%s: caching responses for %ss", config.name, config.cache.default_ttl_seconds)
        return AsyncCacheClient(
            base_url=base_url,
            headers=headers,
            timeout=config.timeout_seconds,
            transport=transport,
            storage=_cache_storage(config.cache),
            policy=_cache_policy(config.cache),
        )

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(
        self,
        url: str,
        *,
        params: QueryParamTypes | None = None,
        headers: HeaderTypes | None = None,
    ) -> httpx.Response:
        if self._limiter is None:
            response = await self._client.get(url, params=params, headers=headers)
        else:
            async with self._limiter:
                response = await self._client.get(url, params=params, headers=headers)
        log.debug("%s: GET %s -> %s", self.config.name, response.url, response.status_code)
        return response
