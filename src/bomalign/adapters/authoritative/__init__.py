"""Public interface for the authoritative source adapter."""

from __future__ import annotations

from .client import HttpAuthoritativeSource, build_params, parse_cursor
from .schema import ErrorResponse, PartPayload, PartsPageResponse

__all__ = [
    "ErrorResponse",
    "HttpAuthoritativeSource",
    "PartPayload",
    "PartsPageResponse",
    "build_params",
    "parse_cursor",
]
