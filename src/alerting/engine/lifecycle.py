from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Deque, Dict, FrozenSet, Iterable, Iterator, List, Optional

from src.alerting.config import EngineConfig
from src.alerting.engine import events
from src.alerting.engine.events import AutoResolveError, EventBus, LifecycleEvent
from src.alerting.engine.fingerprint import fingerprint_for
from src.alerting.engine.scheduler import AutoResolveScheduler
from src.alerting.engine.store import AlertStore
from src.alerting.schemas.alerts import Alert, AlertCreate, AlertRuleRef
from src.alerting.schemas.common import TERMINAL_STATUSES, AlertStatus, Severity, utc_now

logger = logging.getLogger(__name__)


# Actor recorded as resolvedBy when the scheduler resolves an alert.
SYSTEM_ACTOR = "system"

_ACKNOWLEDGE_FROM = frozenset({AlertStatus.open})
_ASSIGN_PROMOTES_FROM = frozenset({AlertStatus.open, AlertStatus.acknowledged})
_RESOLVE_FROM = frozenset({AlertStatus.open, AlertStatus.acknowledged, AlertStatus.in_progress})
_CLOSE_FROM = frozenset({AlertStatus.resolved})
_SUPPRESS_FROM = frozenset(s for s in AlertStatus if s is not AlertStatus.closed)
_UNSUPPRESS_FROM = frozenset({AlertStatus.suppressed})


def _new_alert_id() -> str:
    return f"alert_{uuid.uuid4().hex}"


def _doc_to_alert(doc: dict) -> Alert:
    """Snapshot a stored record; nothing in the result aliases the record."""
    data = {k: v for k, v in doc.items() if k != "seq"}
    return Alert.model_validate(copy.deepcopy(data))


class AlertEngine:
    """
    Alert lifecycle controller.

    Owns the alert store (with its fingerprint and rule indices), the
    auto-resolve scheduler and the event bus. Every mutation runs under the
    store lock and queues its events there; they are published after the lock
    is released, by one dispatching thread at a time and in queue order, so
    subscribers observe events in the order the changes were applied and may
    call back into the engine.

    Lifecycle operations return the updated alert snapshot, or None when the
    alert is unknown or its status does not allow the operation; in the latter
    case nothing is changed and nothing is published.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or EngineConfig()
        self.bus = bus or EventBus()
        self._clock = clock
        self._store = AlertStore()
        self._scheduler = AutoResolveScheduler(self._auto_resolve, on_error=self._on_auto_resolve_error)
        self._run_lock = threading.Lock()
        self._running = False
        self._outbox: Deque[LifecycleEvent] = deque()
        self._dispatch_lock = threading.Lock()
        # Nesting of _mutating() by the thread holding the store lock.
        self._depth = 0

    # ---- engine lifecycle ----

    @property
    def running(self) -> bool:
        return self._running

    @property
    def store(self) -> AlertStore:
        return self._store

    def scheduled_count(self) -> int:
        """Number of armed auto-resolve timers."""
        return self._scheduler.pending()

    def is_auto_resolve_armed(self, alert_id: str) -> bool:
        return self._scheduler.is_armed(alert_id)

    def start(self) -> None:
        with self._run_lock:
            if self._running:
                return
            self._running = True
            self._scheduler.start()
        logger.info("Alert engine started")
        self._outbox.append(LifecycleEvent(name=events.ENGINE_STARTED, emitted_at=self._clock()))
        self._flush_events()

    def stop(self) -> None:
        """Cancel every outstanding auto-resolve timer without firing it. Repeated calls are no-ops."""
        with self._run_lock:
            if not self._running:
                return
            self._running = False
            # Not under the store lock: the worker may be waiting for it.
            self._scheduler.stop()
        logger.info("Alert engine stopped")
        self._outbox.append(LifecycleEvent(name=events.ENGINE_STOPPED, emitted_at=self._clock()))
        self._flush_events()

    # ---- creation / dedup ----

    def create_alert(self, attrs: AlertCreate, rule: Optional[AlertRuleRef] = None) -> Alert:
        """
        Record one occurrence of an alert.

        A repeat of a live fingerprint within the dedup window bumps the
        existing alert's count and publishes alert:updated. Anything else
        creates a new OPEN alert, indexes it under its rule (pruning that rule
        if it is over capacity), arms auto-resolve when the rule asks for it,
        and publishes alert:created.
        """
        fingerprint = fingerprint_for(attrs)

        with self._mutating():
            now = self._clock()

            if self.config.enable_deduplication:
                existing = self._store.find_by_fingerprint(fingerprint)
                if existing is not None and self._within_dedup_window(existing, now):
                    existing["count"] += 1
                    existing["lastOccurrenceAt"] = now
                    existing["updatedAt"] = now
                    logger.debug("Merged occurrence into alertId=%s count=%s", existing["id"], existing["count"])
                    return self._emit(events.ALERT_UPDATED, existing)

            doc = {
                "id": _new_alert_id(),
                "tenantId": attrs.tenant_id or "",
                "ruleId": attrs.rule_id or (rule.id if rule is not None else None),
                "name": attrs.name,
                "description": attrs.description,
                "severity": attrs.severity,
                "status": AlertStatus.open,
                "source": attrs.source,
                "sourceId": attrs.source_id,
                "sourceType": attrs.source_type,
                "message": attrs.message,
                "details": copy.deepcopy(attrs.details),
                "metrics": [m.model_dump() for m in attrs.metrics],
                "notificationIds": [],
                "escalationLevel": 0,
                "fingerprint": fingerprint,
                "count": 1,
                "firstOccurrenceAt": now,
                "lastOccurrenceAt": now,
                "createdAt": now,
                "updatedAt": now,
            }
            self._store.put(doc)

            rule_id = doc["ruleId"]
            if rule_id and self._store.rule_size(rule_id) > self.config.max_alerts_per_rule:
                self._prune_rule(rule_id)

            if self.config.enable_auto_resolve and rule is not None and rule.auto_resolve:
                delay = rule.auto_resolve_after
                if delay is None:
                    delay = self.config.auto_resolve_timeout_sec
                if not self._scheduler.arm(doc["id"], delay):
                    logger.warning(
                        "Alert engine not running; auto-resolve not armed for alertId=%s (call start())", doc["id"]
                    )

            logger.debug("Created alertId=%s ruleId=%s fingerprint=%s", doc["id"], rule_id, fingerprint)
            return self._emit(events.ALERT_CREATED, doc)

    def _within_dedup_window(self, doc: dict, now: datetime) -> bool:
        age = (now - doc["lastOccurrenceAt"]).total_seconds()
        return age < float(self.config.deduplication_window_sec)

    # ---- state machine ----

    def _locate(self, alert_id: str, allowed: Optional[FrozenSet[AlertStatus]], op: str) -> Optional[dict]:
        """Return the record if it exists and its status is in `allowed` (None = any). Caller holds the lock."""
        doc = self._store.get(alert_id)
        if doc is None:
            logger.debug("%s not applicable: alertId=%s not found", op, alert_id)
            return None
        if allowed is not None and doc["status"] not in allowed:
            logger.debug("%s not applicable: alertId=%s status=%s", op, alert_id, doc["status"].value)
            return None
        return doc

    def acknowledge(self, alert_id: str, user_id: str) -> Optional[Alert]:
        with self._mutating():
            doc = self._locate(alert_id, _ACKNOWLEDGE_FROM, "acknowledge")
            if doc is None:
                return None
            now = self._clock()
            doc["status"] = AlertStatus.acknowledged
            doc["acknowledgedBy"] = user_id
            doc["acknowledgedAt"] = now
            doc["updatedAt"] = now
            return self._emit(events.ALERT_ACKNOWLEDGED, doc)

    def assign(self, alert_id: str, user_id: str) -> Optional[Alert]:
        """Set the assignee; OPEN and ACKNOWLEDGED alerts also move to IN_PROGRESS."""
        with self._mutating():
            doc = self._locate(alert_id, None, "assign")
            if doc is None:
                return None
            now = self._clock()
            doc["assignedTo"] = user_id
            doc["assignedAt"] = now
            doc["updatedAt"] = now
            if doc["status"] in _ASSIGN_PROMOTES_FROM:
                doc["status"] = AlertStatus.in_progress
            return self._emit(events.ALERT_ASSIGNED, doc)

    def resolve(self, alert_id: str, user_id: Optional[str] = None) -> Optional[Alert]:
        with self._mutating():
            doc = self._locate(alert_id, _RESOLVE_FROM, "resolve")
            if doc is None:
                return None
            now = self._clock()
            doc["status"] = AlertStatus.resolved
            doc["resolvedBy"] = user_id
            doc["resolvedAt"] = now
            doc["updatedAt"] = now
            self._scheduler.cancel(alert_id)
            return self._emit(events.ALERT_RESOLVED, doc)

    def close(self, alert_id: str) -> Optional[Alert]:
        with self._mutating():
            doc = self._locate(alert_id, _CLOSE_FROM, "close")
            if doc is None:
                return None
            doc["status"] = AlertStatus.closed
            doc["updatedAt"] = self._clock()
            self._scheduler.cancel(alert_id)
            return self._emit(events.ALERT_CLOSED, doc)

    def suppress(self, alert_id: str, suppress_until: datetime, reason: Optional[str] = None) -> Optional[Alert]:
        with self._mutating():
            doc = self._locate(alert_id, _SUPPRESS_FROM, "suppress")
            if doc is None:
                return None
            doc["status"] = AlertStatus.suppressed
            doc["suppressedUntil"] = suppress_until
            doc["suppressionReason"] = reason
            doc["updatedAt"] = self._clock()
            self._scheduler.cancel(alert_id)
            return self._emit(events.ALERT_SUPPRESSED, doc)

    def unsuppress(self, alert_id: str) -> Optional[Alert]:
        """Return a SUPPRESSED alert to OPEN. Auto-resolve is not re-armed."""
        with self._mutating():
            doc = self._locate(alert_id, _UNSUPPRESS_FROM, "unsuppress")
            if doc is None:
                return None
            doc["status"] = AlertStatus.open
            doc["suppressedUntil"] = None
            doc["suppressionReason"] = None
            doc["updatedAt"] = self._clock()
            return self._emit(events.ALERT_UNSUPPRESSED, doc)

    # ---- auto-resolve ----

    def _auto_resolve(self, alert_id: str, generation: int) -> None:
        with self._mutating():
            # A cancel, re-arm or stop since the timer came due wins over this firing.
            if not self._scheduler.consume(alert_id, generation):
                logger.debug("Auto-resolve for alertId=%s was canceled after it came due", alert_id)
                return
            if self.resolve(alert_id, SYSTEM_ACTOR) is None:
                logger.debug("Auto-resolve no-op for alertId=%s (missing or no longer resolvable)", alert_id)

    def _on_auto_resolve_error(self, alert_id: str, exc: BaseException) -> None:
        err = AutoResolveError(alert_id)
        err.__cause__ = exc
        self._outbox.append(LifecycleEvent(name=events.ERROR, error=err, emitted_at=self._clock()))
        self._flush_events()

    # ---- pruning / removal ----

    def _remove(self, alert_id: str) -> None:
        """Caller holds the lock."""
        self._scheduler.cancel(alert_id)
        doc = self._store.remove(alert_id)
        if doc is not None:
            self._emit(events.ALERT_REMOVED, doc)

    def _prune_rule(self, rule_id: str) -> int:
        """Evict the oldest resolved/closed alerts of a rule until it is back within capacity."""
        members = self._store.rule_members(rule_id)
        excess = len(members) - self.config.max_alerts_per_rule
        removed = 0
        for doc in sorted(members, key=lambda d: (d["createdAt"], d["seq"])):
            if removed >= excess:
                break
            if doc["status"] in TERMINAL_STATUSES:
                self._remove(doc["id"])
                removed += 1
        if removed < excess:
            # Active alerts are never evicted; the rule stays over capacity until some terminate.
            logger.info(
                "Rule ruleId=%s remains over capacity (size=%s max=%s)",
                rule_id,
                self._store.rule_size(rule_id),
                self.config.max_alerts_per_rule,
            )
        return removed

    def clear_resolved(self, older_than: Optional[datetime] = None) -> int:
        """Remove resolved/closed alerts (resolved before `older_than`, when given). Returns how many went."""
        with self._mutating():
            victims = [
                doc["id"]
                for doc in self._store.values()
                if doc["status"] in TERMINAL_STATUSES
                and (older_than is None or (doc.get("resolvedAt") is not None and doc["resolvedAt"] < older_than))
            ]
            for alert_id in victims:
                self._remove(alert_id)
        if victims:
            logger.info("Cleared %s resolved/closed alerts", len(victims))
        return len(victims)

    # ---- queries ----

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._store.lock:
            doc = self._store.get(alert_id)
            return _doc_to_alert(doc) if doc is not None else None

    def get_alerts(
        self,
        tenant_id: Optional[str] = None,
        status: Optional[Iterable[AlertStatus]] = None,
        severity: Optional[Iterable[Severity]] = None,
        source: Optional[str] = None,
        assigned_to: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Alert]:
        """Alerts matching every given filter, newest createdAt first (later insertion wins ties)."""
        statuses = set(status) if status is not None else None
        severities = set(severity) if severity is not None else None

        with self._store.lock:
            docs = [
                d
                for d in self._store.values()
                if (tenant_id is None or d["tenantId"] == tenant_id)
                and (statuses is None or d["status"] in statuses)
                and (severities is None or d["severity"] in severities)
                and (source is None or d["source"] == source)
                and (assigned_to is None or d.get("assignedTo") == assigned_to)
                and (start is None or d["createdAt"] >= start)
                and (end is None or d["createdAt"] <= end)
            ]
            docs.sort(key=lambda d: (d["createdAt"], d["seq"]), reverse=True)
            return [_doc_to_alert(d) for d in docs]

    def get_alerts_by_rule(self, rule_id: str) -> List[Alert]:
        with self._store.lock:
            return [_doc_to_alert(d) for d in self._store.rule_members(rule_id)]

    def get_stats(self) -> Dict[str, Any]:
        """Total plus counts by status and by severity; every enum member is present."""
        by_status: Dict[AlertStatus, int] = {s: 0 for s in AlertStatus}
        by_severity: Dict[Severity, int] = {s: 0 for s in Severity}
        with self._store.lock:
            docs = self._store.values()
            for d in docs:
                by_status[d["status"]] += 1
                by_severity[d["severity"]] += 1
        return {"total": len(docs), "byStatus": by_status, "bySeverity": by_severity}

    # ---- helpers ----

    @contextmanager
    def _mutating(self) -> Iterator[None]:
        """Hold the store lock; publish the events queued inside once the outermost holder leaves."""
        outermost = False
        try:
            with self._store.lock:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                    outermost = self._depth == 0
        finally:
            if outermost:
                self._flush_events()

    def _flush_events(self) -> None:
        """
        Publish queued events in order.

        Only one thread dispatches at a time. A thread that finds another one
        dispatching (or is itself inside a handler) leaves its events to that
        dispatcher, which re-checks the queue after letting go of the lock.
        """
        while self._outbox:
            if not self._dispatch_lock.acquire(blocking=False):
                return
            try:
                while self._outbox:
                    self.bus.publish(self._outbox.popleft())
            finally:
                self._dispatch_lock.release()

    def _emit(self, name: str, doc: dict) -> Alert:
        """Snapshot the record and queue its event. Caller holds the store lock."""
        snapshot = _doc_to_alert(doc)
        self._outbox.append(LifecycleEvent(name=name, alert=snapshot, emitted_at=self._clock()))
        return snapshot
