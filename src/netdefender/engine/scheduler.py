"""Tick-driven scheduler for deferred, cancellable callbacks.

Time only moves when the owner calls :meth:`TickScheduler.advance` with the
simulation's delta, so a deferred computation runs inside a later tick rather
than blocking the current one.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class ScheduledCall:
    """Handle for a pending callback."""

    __slots__ = ("args", "callback", "cancelled", "due", "fired")

    def __init__(self, due: float, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self.due = due
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "fired" if self.fired else "pending"
        return f"<ScheduledCall {getattr(self.callback, '__name__', self.callback)} due={self.due:.3f} {state}>"


class TickScheduler:
    """Min-heap of calls ordered by due time, then by scheduling order."""

    def __init__(self) -> None:
        self.now = 0.0
        self._heap: list[tuple[float, int, ScheduledCall]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ScheduledCall:
        """Run ``callback(*args)`` once ``delay`` seconds of ticks have elapsed."""
        if delay < 0:
            raise ValueError("delay must be non-negative")
        call = ScheduledCall(self.now + delay, callback, args)
        heapq.heappush(self._heap, (call.due, next(self._seq), call))
        return call

    def advance(self, dt: float) -> int:
        """Move time forward by ``dt`` and fire every call that became due.

        Returns:
            Number of callbacks fired.
        """
        self.now += dt
        fired = 0
        while self._heap and self._heap[0][0] <= self.now:
            _, _, call = heapq.heappop(self._heap)
            if call.cancelled:
                continue
            call.fired = True
            call.callback(*call.args)
            fired += 1
        return fired

    def cancel_all(self) -> None:
        """Cancel and drop every pending call."""
        for _, _, call in self._heap:
            call.cancel()
        if self._heap:
            logger.debug("Cancelled %d scheduled calls", len(self._heap))
        self._heap.clear()

    def __len__(self) -> int:
        return sum(1 for _, _, call in self._heap if call.pending)
