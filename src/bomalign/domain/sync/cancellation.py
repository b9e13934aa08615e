"""Cooperative cancellation for sync runs."""

from __future__ import annotations

import threading


class CancellationToken:
    """Flag observed by the orchestrator at batch boundaries.

    Backed by ``threading.Event`` so it can be set from a signal handler or
    another thread while the run executes on an event loop.
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
