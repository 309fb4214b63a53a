from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


_SEVERITY_RANK = {"info": 0, "warning": 1, "error": 2, "critical": 3, "fatal": 4}


class Severity(str, Enum):
    """Ordered severity levels for alerts (info < warning < error < critical < fatal)."""

    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"
    fatal = "fatal"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self.value]

    # Compare by rank, not by the underlying string.
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


class AlertStatus(str, Enum):
    """Lifecycle states an alert can be in."""

    open = "open"
    acknowledged = "acknowledged"
    in_progress = "in_progress"
    resolved = "resolved"
    closed = "closed"
    suppressed = "suppressed"


# Statuses whose alerts may be evicted by pruning or clear-resolved.
TERMINAL_STATUSES = frozenset({AlertStatus.resolved, AlertStatus.closed})


class HealthResponse(BaseModel):
    """Response model for health endpoints."""

    status: str = Field(..., description="High-level health status string (e.g., 'ok').")
    message: str = Field(..., description="Human-readable status message.")
    timestamp: datetime = Field(..., description="UTC timestamp at time of response.")


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    detail: str = Field(..., description="Human-readable error details.")
    code: Optional[str] = Field(default=None, description="Optional machine-readable error code.")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional metadata for debugging.")


# PUBLIC_INTERFACE
def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
