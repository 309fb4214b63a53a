from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Path, Query, Request, status

from src.alerting.schemas.alerts import (
    Alert,
    AlertCreateRequest,
    AlertListResponse,
    AlertsQuery,
    AlertStatsResponse,
    ClearResolvedRequest,
    ClearResolvedResponse,
    LifecycleEventListResponse,
    ResolveRequest,
    SuppressRequest,
    UserActionRequest,
)
from src.alerting.schemas.common import AlertStatus, ErrorResponse, Severity
from src.alerting.services import alerts_service

router = APIRouter(prefix="/api/alerts", tags=["Alerts"])

_TRANSITION_RESPONSES = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


def _not_applicable(request: Request, alert_id: str, operation: str) -> HTTPException:
    # The engine reports both "unknown id" and "wrong status" as None; re-query to tell them apart.
    current = alerts_service.get_alert(request, alert_id)
    if current is None:
        return HTTPException(status_code=404, detail="alert not found")
    return HTTPException(
        status_code=409,
        detail=f"{operation} not applicable to an alert in status '{current.status.value}'",
    )


@router.post(
    "",
    response_model=Alert,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Submit alert occurrence",
    description=(
        "Create a new alert, or merge into the live alert with the same fingerprint when it was last seen "
        "within the deduplication window (its count is incremented)."
    ),
    operation_id="create_alert",
)
def create_alert(request: Request, payload: AlertCreateRequest) -> Alert:
    """Create or merge an alert."""
    if not payload.alert.name.strip():
        raise HTTPException(status_code=400, detail="name must not be empty")
    return alerts_service.create_alert(request, payload)


@router.get(
    "",
    response_model=AlertListResponse,
    summary="List alerts",
    description=(
        "List alerts with filters: tenantId, status (repeatable), severity (repeatable), source, assignedTo, "
        "createdAt range. Results sorted by createdAt desc."
    ),
    operation_id="list_alerts",
)
def list_alerts(
    request: Request,
    tenant_id: Optional[str] = Query(default=None, alias="tenantId"),
    status_filter: Optional[List[AlertStatus]] = Query(default=None, alias="status"),
    severity: Optional[List[Severity]] = Query(default=None),
    source: Optional[str] = Query(default=None),
    assigned_to: Optional[str] = Query(default=None, alias="assignedTo"),
    start: Optional[datetime] = Query(default=None, description="ISO datetime start (inclusive)"),
    end: Optional[datetime] = Query(default=None, description="ISO datetime end (inclusive)"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0, le=100000),
) -> AlertListResponse:
    """List alerts with filters and pagination."""
    filters = AlertsQuery(
        tenantId=tenant_id,
        status=status_filter,
        severity=severity,
        source=source,
        assignedTo=assigned_to,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    items, total = alerts_service.list_alerts(request, filters)
    return AlertListResponse(items=items, total=total)


@router.get(
    "/stats",
    response_model=AlertStatsResponse,
    summary="Alert statistics",
    description="Counts of all stored alerts grouped by status and by severity.",
    operation_id="get_alert_stats",
)
def get_stats(request: Request) -> AlertStatsResponse:
    """Return alert counts."""
    return alerts_service.get_stats(request)


@router.get(
    "/events",
    response_model=LifecycleEventListResponse,
    summary="List lifecycle events feed",
    description="Recent lifecycle events kept in memory, newest first. Filter by alertId and eventType.",
    operation_id="list_lifecycle_events",
)
def list_events(
    request: Request,
    alert_id: Optional[str] = Query(default=None, alias="alertId"),
    event_type: Optional[str] = Query(default=None, alias="eventType", description="e.g. alert:created"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0, le=100000),
) -> LifecycleEventListResponse:
    """List recent lifecycle events."""
    items, total = alerts_service.list_events(
        request, alert_id=alert_id, event_type=event_type, limit=limit, offset=offset
    )
    return LifecycleEventListResponse(items=items, total=total)


@router.get(
    "/rules/{rule_id}",
    response_model=AlertListResponse,
    summary="List alerts of a rule",
    description="Alerts currently indexed under a rule, oldest first.",
    operation_id="list_rule_alerts",
)
def list_rule_alerts(
    request: Request,
    rule_id: str = Path(..., description="Rule id."),
) -> AlertListResponse:
    """List alerts indexed under a rule."""
    items = alerts_service.list_rule_alerts(request, rule_id)
    return AlertListResponse(items=items, total=len(items))


@router.post(
    "/clear-resolved",
    response_model=ClearResolvedResponse,
    summary="Clear resolved alerts",
    description="Remove resolved and closed alerts, optionally only those resolved before olderThan.",
    operation_id="clear_resolved_alerts",
)
def clear_resolved(request: Request, payload: ClearResolvedRequest) -> ClearResolvedResponse:
    """Bulk-remove resolved/closed alerts."""
    return ClearResolvedResponse(cleared=alerts_service.clear_resolved(request, payload.older_than))


@router.get(
    "/{alert_id}",
    response_model=Alert,
    responses={404: {"model": ErrorResponse}},
    summary="Get alert",
    description="Fetch a single alert by id.",
    operation_id="get_alert",
)
def get_alert(
    request: Request,
    alert_id: str = Path(..., description="Alert id."),
) -> Alert:
    """Get an alert by id."""
    alert = alerts_service.get_alert(request, alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail="alert not found")
    return alert


@router.post(
    "/{alert_id}/acknowledge",
    response_model=Alert,
    responses=_TRANSITION_RESPONSES,
    summary="Acknowledge alert",
    description="OPEN -> ACKNOWLEDGED.",
    operation_id="acknowledge_alert",
)
def acknowledge(request: Request, payload: UserActionRequest, alert_id: str = Path(...)) -> Alert:
    """Acknowledge an open alert."""
    alert = alerts_service.acknowledge(request, alert_id, payload.user_id)
    if alert is None:
        raise _not_applicable(request, alert_id, "acknowledge")
    return alert


@router.post(
    "/{alert_id}/assign",
    response_model=Alert,
    responses={404: {"model": ErrorResponse}},
    summary="Assign alert",
    description="Set the assignee; OPEN and ACKNOWLEDGED alerts move to IN_PROGRESS.",
    operation_id="assign_alert",
)
def assign(request: Request, payload: UserActionRequest, alert_id: str = Path(...)) -> Alert:
    """Assign an alert to a user."""
    alert = alerts_service.assign(request, alert_id, payload.user_id)
    if alert is None:
        raise _not_applicable(request, alert_id, "assign")
    return alert


@router.post(
    "/{alert_id}/resolve",
    response_model=Alert,
    responses=_TRANSITION_RESPONSES,
    summary="Resolve alert",
    description="OPEN, ACKNOWLEDGED or IN_PROGRESS -> RESOLVED. Cancels a pending auto-resolve.",
    operation_id="resolve_alert",
)
def resolve(request: Request, payload: ResolveRequest, alert_id: str = Path(...)) -> Alert:
    """Resolve an active alert."""
    alert = alerts_service.resolve(request, alert_id, payload.user_id)
    if alert is None:
        raise _not_applicable(request, alert_id, "resolve")
    return alert


@router.post(
    "/{alert_id}/close",
    response_model=Alert,
    responses=_TRANSITION_RESPONSES,
    summary="Close alert",
    description="RESOLVED -> CLOSED.",
    operation_id="close_alert",
)
def close(request: Request, alert_id: str = Path(...)) -> Alert:
    """Close a resolved alert."""
    alert = alerts_service.close(request, alert_id)
    if alert is None:
        raise _not_applicable(request, alert_id, "close")
    return alert


@router.post(
    "/{alert_id}/suppress",
    response_model=Alert,
    responses=_TRANSITION_RESPONSES,
    summary="Suppress alert",
    description="Any status except CLOSED -> SUPPRESSED. Cancels a pending auto-resolve.",
    operation_id="suppress_alert",
)
def suppress(request: Request, payload: SuppressRequest, alert_id: str = Path(...)) -> Alert:
    """Suppress an alert until a given time."""
    alert = alerts_service.suppress(request, alert_id, payload.suppress_until, payload.reason)
    if alert is None:
        raise _not_applicable(request, alert_id, "suppress")
    return alert


@router.post(
    "/{alert_id}/unsuppress",
    response_model=Alert,
    responses=_TRANSITION_RESPONSES,
    summary="Unsuppress alert",
    description="SUPPRESSED -> OPEN.",
    operation_id="unsuppress_alert",
)
def unsuppress(request: Request, alert_id: str = Path(...)) -> Alert:
    """Return a suppressed alert to OPEN."""
    alert = alerts_service.unsuppress(request, alert_id)
    if alert is None:
        raise _not_applicable(request, alert_id, "unsuppress")
    return alert
