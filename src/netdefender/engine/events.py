"""Outbound notification bus.

Notifications are fire-and-forget: a failing handler is logged and the
remaining handlers still run.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], None]


class Event(StrEnum):
    """Notification names and their payload keys."""

    STRATEGY_UPDATED = "strategy_updated"  # {policy, analysis}
    TOPOLOGY_SWITCHED = "topology_switched"  # {from, to, reasoning}
    PHASE_CHANGED = "phase_changed"  # {phase, canPlaceDefenses}
    PHASE_TIMER_TICK = "phase_timer_tick"  # {phase, elapsedSeconds, remainingSeconds}
    EQUILIBRIUM_SESSION_COMPLETE = "equilibrium_session_complete"  # {score, analysis, survived, rating}


class EventBus:
    """Synchronous pub/sub keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a handler.

        Returns:
            A function that unsubscribes the handler.
        """
        self._handlers[event].append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("Event handler error for '%s'", event)

    def clear(self, event: str | None = None) -> None:
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event, None)
