"""Sync runs: scanning the authoritative source and recording differences."""

from __future__ import annotations

from .cancellation import CancellationToken
from .detection import as_text, detect_differences
from .orchestrator import SyncOrchestrator
from .policy import SyncPolicy
from .status import SyncProgress, SyncRunView, derive_terminal_status

__all__ = [
    "CancellationToken",
    "SyncOrchestrator",
    "SyncPolicy",
    "SyncProgress",
    "SyncRunView",
    "as_text",
    "derive_terminal_status",
    "detect_differences",
]
