from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from fastapi import Request

from src.alerting.engine.events import LifecycleEvent
from src.alerting.schemas.alerts import (
    Alert,
    AlertCreateRequest,
    AlertsQuery,
    AlertStatsResponse,
    LifecycleEventOut,
)
from src.alerting.state import get_state

logger = logging.getLogger(__name__)


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    # Naive datetimes from query strings are taken as UTC so they compare with stored timestamps.
    if v is None or v.tzinfo is not None:
        return v
    return v.replace(tzinfo=timezone.utc)


def _event_to_out(event: LifecycleEvent) -> LifecycleEventOut:
    return LifecycleEventOut(
        eventType=event.name,
        alertId=event.alert_id,
        alert=event.alert,
        error=str(event.error) if event.error is not None else None,
        emittedAt=event.emitted_at,
    )


# PUBLIC_INTERFACE
def create_alert(request: Request, payload: AlertCreateRequest) -> Alert:
    """Submit one alert occurrence (creates a new alert or merges into a live duplicate)."""
    return get_state(request.app).engine.create_alert(payload.alert, payload.rule)


# PUBLIC_INTERFACE
def get_alert(request: Request, alert_id: str) -> Optional[Alert]:
    """Fetch an alert by id; returns None if not found."""
    return get_state(request.app).engine.get_alert(alert_id)


# PUBLIC_INTERFACE
def list_alerts(request: Request, filters: AlertsQuery) -> Tuple[List[Alert], int]:
    """
    List alerts with filters and pagination.

    Returns (items, total_matching).
    """
    engine = get_state(request.app).engine
    alerts = engine.get_alerts(
        tenant_id=filters.tenant_id,
        status=filters.status,
        severity=filters.severity,
        source=filters.source,
        assigned_to=filters.assigned_to,
        start=_as_utc(filters.start),
        end=_as_utc(filters.end),
    )
    page = alerts[int(filters.offset) : int(filters.offset) + int(filters.limit)]
    return page, len(alerts)


# PUBLIC_INTERFACE
def list_rule_alerts(request: Request, rule_id: str) -> List[Alert]:
    """Alerts currently indexed under a rule."""
    return get_state(request.app).engine.get_alerts_by_rule(rule_id)


# PUBLIC_INTERFACE
def get_stats(request: Request) -> AlertStatsResponse:
    """Counts of stored alerts by status and severity."""
    stats = get_state(request.app).engine.get_stats()
    return AlertStatsResponse(total=stats["total"], byStatus=stats["byStatus"], bySeverity=stats["bySeverity"])


# PUBLIC_INTERFACE
def acknowledge(request: Request, alert_id: str, user_id: str) -> Optional[Alert]:
    return get_state(request.app).engine.acknowledge(alert_id, user_id)


# PUBLIC_INTERFACE
def assign(request: Request, alert_id: str, user_id: str) -> Optional[Alert]:
    return get_state(request.app).engine.assign(alert_id, user_id)


# PUBLIC_INTERFACE
def resolve(request: Request, alert_id: str, user_id: Optional[str] = None) -> Optional[Alert]:
    return get_state(request.app).engine.resolve(alert_id, user_id)


# PUBLIC_INTERFACE
def close(request: Request, alert_id: str) -> Optional[Alert]:
    return get_state(request.app).engine.close(alert_id)


# PUBLIC_INTERFACE
def suppress(request: Request, alert_id: str, suppress_until: datetime, reason: Optional[str]) -> Optional[Alert]:
    return get_state(request.app).engine.suppress(alert_id, _as_utc(suppress_until), reason)


# PUBLIC_INTERFACE
def unsuppress(request: Request, alert_id: str) -> Optional[Alert]:
    return get_state(request.app).engine.unsuppress(alert_id)


# PUBLIC_INTERFACE
def clear_resolved(request: Request, older_than: Optional[datetime] = None) -> int:
    """Remove resolved/closed alerts; returns how many were removed."""
    return get_state(request.app).engine.clear_resolved(_as_utc(older_than))


# PUBLIC_INTERFACE
def list_events(
    request: Request,
    alert_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> Tuple[List[LifecycleEventOut], int]:
    """Recent lifecycle events, newest first. Returns (items, total_matching)."""
    items, total = get_state(request.app).feed.query(
        alert_id=alert_id, event_type=event_type, limit=int(limit), offset=int(offset)
    )
    return [_event_to_out(e) for e in items], total
