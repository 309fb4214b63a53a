from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Callable, Deque, Dict, List, Optional, Tuple

from src.alerting.schemas.alerts import Alert
from src.alerting.schemas.common import utc_now

logger = logging.getLogger(__name__)


ALERT_CREATED = "alert:created"
ALERT_UPDATED = "alert:updated"
ALERT_ACKNOWLEDGED = "alert:acknowledged"
ALERT_ASSIGNED = "alert:assigned"
ALERT_RESOLVED = "alert:resolved"
ALERT_CLOSED = "alert:closed"
ALERT_SUPPRESSED = "alert:suppressed"
ALERT_UNSUPPRESSED = "alert:unsuppressed"
ALERT_REMOVED = "alert:removed"
ERROR = "error"
ENGINE_STARTED = "engine:started"
ENGINE_STOPPED = "engine:stopped"

# Subscribe with this name to receive every event.
ALL_EVENTS = "*"


class AutoResolveError(RuntimeError):
    """A scheduled auto-resolve action failed; the original exception is chained as __cause__."""

    def __init__(self, alert_id: str, message: str = "auto-resolve failed"):
        super().__init__(f"{message} (alertId={alert_id})")
        self.alert_id = alert_id


@dataclass(frozen=True)
class LifecycleEvent:
    """One published event. `alert` is an immutable snapshot taken when the event was emitted."""

    name: str
    alert: Optional[Alert] = None
    error: Optional[BaseException] = None
    emitted_at: datetime = field(default_factory=utc_now)

    @property
    def alert_id(self) -> Optional[str]:
        if self.alert is not None:
            return self.alert.id
        return getattr(self.error, "alert_id", None)


Handler = Callable[[LifecycleEvent], None]


class EventBus:
    """
    Synchronous publish/subscribe channel.

    Handlers run on the publisher's thread. A handler that raises is logged and
    skipped; the publisher and the remaining handlers are unaffected.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_name: str, handler: Handler) -> Callable[[], None]:
        """Register handler for event_name (or ALL_EVENTS); returns a callable that unsubscribes it."""
        with self._lock:
            self._handlers.setdefault(event_name, []).append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(event_name, handler)

        return _unsubscribe

    def unsubscribe(self, event_name: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_name)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def publish(self, event: LifecycleEvent) -> None:
        with self._lock:
            targets = list(self._handlers.get(event.name, ())) + list(self._handlers.get(ALL_EVENTS, ()))
        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for event=%s alertId=%s", event.name, event.alert_id)


class EventFeed:
    """Bounded in-memory log of recent lifecycle events, newest last."""

    def __init__(self, maxlen: int = 1000) -> None:
        self._lock = Lock()
        self._events: Deque[LifecycleEvent] = deque(maxlen=max(1, int(maxlen)))

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.subscribe(ALL_EVENTS, self.record)

    def record(self, event: LifecycleEvent) -> None:
        with self._lock:
            self._events.append(event)

    def query(
        self,
        alert_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[LifecycleEvent], int]:
        """Matching events newest first, paginated. Returns (items, total_matching)."""
        with self._lock:
            events = list(self._events)
        matched = [
            e
            for e in reversed(events)
            if (alert_id is None or e.alert_id == alert_id) and (event_type is None or e.name == event_type)
        ]
        return matched[offset : offset + limit], len(matched)
