"""Error taxonomy shared by the reconciliation core.

Every error carries a stable ``kind`` so outer layers (CLI, services) can
render a structured ``{"kind", "message"}`` payload without inspecting types.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    kind: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ReconciliationError(Exception):
    """Base class for all expected reconciliation failures."""

    kind: ClassVar[str] = "InternalError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_payload(self) -> ErrorPayload:
        return ErrorPayload(kind=self.kind, message=self.message)


class NotFoundError(ReconciliationError):
    """Raised for unknown record, run or snapshot ids."""

    kind = "NotFound"


class InvalidStateError(ReconciliationError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    kind = "InvalidState"


class SyncBusyError(InvalidStateError):
    """Raised when a sync run is requested while another one is RUNNING."""

    kind = "Busy"


class ValidationError(ReconciliationError):
    """Raised for malformed requests (filters, pages, diff arguments)."""

    kind = "ValidationError"


class UpstreamUnavailableError(ReconciliationError):
    """Raised by source adapters when the authoritative system cannot be reached."""

    kind = "UpstreamUnavailable"


class InternalError(ReconciliationError):
    """Raised for unexpected failures that do not fit another kind."""

    kind = "InternalError"


def error_payload(exc: BaseException) -> ErrorPayload:
    """Return the structured payload for ``exc``; unknown exceptions map to InternalError."""

    if isinstance(exc, ReconciliationError):
        return exc.as_payload()
    return ErrorPayload(kind=InternalError.kind, message=str(exc) or type(exc).__name__)


__all__ = [
    "ErrorPayload",
    "InternalError",
    "InvalidStateError",
    "NotFoundError",
    "ReconciliationError",
    "SyncBusyError",
    "UpstreamUnavailableError",
    "ValidationError",
    "error_payload",
]
