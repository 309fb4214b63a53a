from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.alerting.schemas.common import AlertStatus, Severity


MetricOperator = Literal[
    "equals",
    "not_equals",
    "greater_than",
    "greater_than_or_equal",
    "less_than",
    "less_than_or_equal",
    "contains",
    "not_contains",
    "matches",
    "in",
    "not_in",
]


class AlertMetric(BaseModel):
    """A measured value attached to an alert by the rule evaluator."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Metric name.")
    value: float = Field(..., description="Observed value.")
    unit: Optional[str] = Field(default=None, description="Unit label, if any.")
    threshold: Optional[float] = Field(default=None, description="Threshold the value was compared to.")
    operator: Optional[MetricOperator] = Field(default=None, description="Comparison used against the threshold.")


class AlertCreate(BaseModel):
    """Alert attributes submitted by a rule evaluator."""

    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field("", description="Owning tenant.", alias="tenantId")
    rule_id: Optional[str] = Field(default=None, description="Rule that produced the alert.", alias="ruleId")
    name: str = Field("Unnamed Alert", description="Short alert name.")
    description: Optional[str] = Field(default=None, description="Longer description.")
    severity: Severity = Field(Severity.warning, description="Alert severity.")
    source: str = Field("unknown", description="Emitting system or subsystem.")
    source_id: Optional[str] = Field(default=None, description="Identifier within the source.", alias="sourceId")
    source_type: Optional[str] = Field(default=None, description="Kind of source.", alias="sourceType")
    message: str = Field("", description="Human-readable alert message.")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Free-form structured details.")
    metrics: List[AlertMetric] = Field(default_factory=list, description="Metrics that triggered the alert.")


class AlertRuleRef(BaseModel):
    """The subset of a rule definition the lifecycle engine cares about."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Rule id.")
    auto_resolve: bool = Field(False, description="Resolve automatically after a delay.", alias="autoResolve")
    auto_resolve_after: Optional[float] = Field(
        default=None,
        ge=0,
        description="Auto-resolve delay in seconds; falls back to the engine default.",
        alias="autoResolveAfter",
    )


class Alert(BaseModel):
    """Immutable snapshot of an alert record."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Alert id.")
    tenant_id: str = Field(..., alias="tenantId")
    rule_id: Optional[str] = Field(default=None, alias="ruleId")

    name: str
    description: Optional[str] = None
    severity: Severity
    status: AlertStatus

    source: str
    source_id: Optional[str] = Field(default=None, alias="sourceId")
    source_type: Optional[str] = Field(default=None, alias="sourceType")

    message: str
    details: Optional[Dict[str, Any]] = None
    metrics: List[AlertMetric] = Field(default_factory=list)

    assigned_to: Optional[str] = Field(default=None, alias="assignedTo")
    assigned_at: Optional[datetime] = Field(default=None, alias="assignedAt")
    acknowledged_by: Optional[str] = Field(default=None, alias="acknowledgedBy")
    acknowledged_at: Optional[datetime] = Field(default=None, alias="acknowledgedAt")
    resolved_by: Optional[str] = Field(default=None, alias="resolvedBy")
    resolved_at: Optional[datetime] = Field(default=None, alias="resolvedAt")

    notification_ids: List[str] = Field(default_factory=list, alias="notificationIds")
    escalation_level: int = Field(0, alias="escalationLevel")

    fingerprint: str
    count: int = Field(..., ge=1, description="Number of occurrences merged into this alert.")
    first_occurrence_at: datetime = Field(..., alias="firstOccurrenceAt")
    last_occurrence_at: datetime = Field(..., alias="lastOccurrenceAt")

    suppressed_until: Optional[datetime] = Field(default=None, alias="suppressedUntil")
    suppression_reason: Optional[str] = Field(default=None, alias="suppressionReason")

    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class AlertCreateRequest(BaseModel):
    """Request body for POST /api/alerts."""

    alert: AlertCreate = Field(..., description="Alert attributes.")
    rule: Optional[AlertRuleRef] = Field(default=None, description="Triggering rule, if any.")


class AlertListResponse(BaseModel):
    """Envelope for listing alerts."""

    items: List[Alert] = Field(..., description="Alerts, newest first.")
    total: int = Field(..., ge=0, description="Total count of matching alerts before pagination.")


class AlertStatsResponse(BaseModel):
    """Counts of stored alerts."""

    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(..., ge=0)
    by_status: Dict[AlertStatus, int] = Field(..., alias="byStatus")
    by_severity: Dict[Severity, int] = Field(..., alias="bySeverity")


class AlertsQuery(BaseModel):
    """Filter/pagination model for listing alerts (used by router query params)."""

    model_config = ConfigDict(populate_by_name=True)

    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    status: Optional[List[AlertStatus]] = Field(default=None, description="Match any of these statuses.")
    severity: Optional[List[Severity]] = Field(default=None, description="Match any of these severities.")
    source: Optional[str] = None
    assigned_to: Optional[str] = Field(default=None, alias="assignedTo")
    start: Optional[datetime] = Field(default=None, description="createdAt lower bound (inclusive).")
    end: Optional[datetime] = Field(default=None, description="createdAt upper bound (inclusive).")
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0, le=100000)


class UserActionRequest(BaseModel):
    """Body for acknowledge/assign."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1, alias="userId")


class ResolveRequest(BaseModel):
    """Body for resolve; the resolver is optional."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")


class SuppressRequest(BaseModel):
    """Body for suppress."""

    model_config = ConfigDict(populate_by_name=True)

    suppress_until: datetime = Field(..., alias="suppressUntil")
    reason: Optional[str] = None


class ClearResolvedRequest(BaseModel):
    """Body for bulk clearing of resolved/closed alerts."""

    model_config = ConfigDict(populate_by_name=True)

    older_than: Optional[datetime] = Field(
        default=None, description="Only clear alerts resolved before this instant.", alias="olderThan"
    )


class ClearResolvedResponse(BaseModel):
    cleared: int = Field(..., ge=0)


class LifecycleEventOut(BaseModel):
    """One entry of the in-memory lifecycle event feed."""

    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(..., alias="eventType")
    alert_id: Optional[str] = Field(default=None, alias="alertId")
    alert: Optional[Alert] = None
    error: Optional[str] = None
    emitted_at: datetime = Field(..., alias="emittedAt")


class LifecycleEventListResponse(BaseModel):
    items: List[LifecycleEventOut]
    total: int = Field(..., ge=0)
