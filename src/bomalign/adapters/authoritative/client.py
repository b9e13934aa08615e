"""HTTP client for the authoritative parts API.

Pages are addressed by offset; the offset travels as the opaque cursor string
the sync orchestrator hands back on the next call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError as PydanticValidationError

from bomalign.adapters.http_resilience import ResilientClient
from bomalign.config.source import AuthoritativeSourceConfig, get_source_config
from bomalign.domain.errors import UpstreamUnavailableError, ValidationError
from bomalign.domain.ports import AuthoritativeSource, SourceBatch, SourceItem

from .schema import ErrorResponse, PartPayload, PartsPageResponse

if TYPE_CHECKING:
    from collections.abc import Callable

    from bomalign.config.http_resilience import ResilienceConfig
    from bomalign.domain.model import SyncFilters

log = getLogger(__name__)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def parse_cursor(cursor: str | None) -> int:
    if cursor is None:
        return 0
    if not cursor.isdigit():
        raise ValidationError(f"Invalid authoritative source cursor: {cursor!r}")
    return int(cursor)


def build_params(offset: int, limit: int, filters: SyncFilters) -> dict[str, str | int | list[str]]:
    params: dict[str, str | int | list[str]] = {"offset": offset, "limit": limit}
    if filters.part_numbers:
        params["part"] = sorted(filters.part_numbers)
    if filters.bom_ids:
        params["bom"] = sorted(filters.bom_ids)
    if filters.since is not None:
        params["updated_since"] = filters.since.isoformat()
    return params


def to_source_item(payload: PartPayload) -> SourceItem:
    return SourceItem(
        part_number=payload.part_number,
        attributes=dict(payload.attributes),
        updated_at=payload.updated_at,
    )


@dataclass(slots=True)
class HttpAuthoritativeSource:
    """Authoritative source over HTTP.

    Without an explicit ``config`` the environment is read on first use, so
    wiring the adapter never requires source credentials.
    """

    config: AuthoritativeSourceConfig | None = None
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )

    async def fetch_batch(
        self,
        cursor: str | None,
        *,
        limit: int,
        filters: SyncFilters,
    ) -> SourceBatch:
        offset = parse_cursor(cursor)
        params = build_params(offset, limit, filters)
        config = self._resolved_config()
        try:
            async with self.client_factory(config.resilience) as client:
                response = await client.get(
                    config.items_path,
                    params=params,
                    headers={"Authorization": f"Bearer {config.token}"},
                )
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(
                f"Authoritative source request failed at offset {offset}: {exc}"
            ) from exc

        page = self._parse_page(response, offset)
        log.debug("Fetched %s parts at offset %s", len(page.items), offset)
        return SourceBatch(
            items=tuple(to_source_item(item) for item in page.items),
            next_cursor=str(page.next_offset) if page.next_offset is not None else None,
        )

    def cursor_after(self, cursor: str | None, limit: int) -> str | None:
        return str(parse_cursor(cursor) + limit)

    def _resolved_config(self) -> AuthoritativeSourceConfig:
        if self.config is None:
            self.config = get_source_config()
        return self.config

    def _parse_page(self, response: httpx.Response, offset: int) -> PartsPageResponse:
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            detail = response.reason_phrase
            if isinstance(payload, dict) and "error" in payload:
                error = ErrorResponse.model_validate(payload)
                detail = f"{error.error}: {error.message}" if error.message else error.error
            log.error(f"Authoritative source error {response.status_code} at offset {offset}")
            raise UpstreamUnavailableError(
                f"Authoritative source returned {response.status_code} ({detail})"
            )

        try:
            return PartsPageResponse.model_validate(payload)
        except PydanticValidationError as exc:
            raise UpstreamUnavailableError(
                f"Unexpected authoritative source payload at offset {offset}: "
                f"{exc.error_count()} validation errors"
            ) from exc


if TYPE_CHECKING:
    _source_check: AuthoritativeSource = HttpAuthoritativeSource()
