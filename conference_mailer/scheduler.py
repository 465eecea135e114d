"""Deferred re-insertion of jobs waiting for their retry delay."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Set


class RetryScheduler:
    """Run callbacks after a delay on the running event loop.

    The email queue only talks to this small surface (``now``,
    ``call_later``, ``cancel_all`` and ``len``), so tests can substitute a
    scheduler driven by a virtual clock.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handles: Set[asyncio.TimerHandle] = set()

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        return self._clock()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        """Invoke ``callback(*args)`` once ``delay`` seconds have elapsed.

        Must be called from the event loop thread.
        """
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._handles.discard(handle)
            callback(*args)

        handle = loop.call_later(max(0.0, float(delay)), _fire)
        self._handles.add(handle)
        return handle

    def cancel_all(self) -> int:
        """Cancel every timer that has not fired yet and return how many were dropped."""
        handles = list(self._handles)
        self._handles.clear()
        for handle in handles:
            handle.cancel()
        return len(handles)

    def __len__(self) -> int:
        return len(self._handles)
