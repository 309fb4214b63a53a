from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.alerting.schemas.common import HealthResponse, utc_now
from src.alerting.state import get_state

router = APIRouter(tags=["Health"])


class EngineDiagnosticsResponse(BaseModel):
    """Diagnostics model describing the alert engine's runtime state and effective configuration."""

    running: bool = Field(..., description="Whether the engine (and its auto-resolve worker) is running.")
    stored_alerts: int = Field(..., ge=0, description="Number of alerts currently held in memory.")
    scheduled_auto_resolves: int = Field(..., ge=0, description="Number of armed auto-resolve timers.")
    retention_loop_active: bool = Field(..., description="Whether the background retention loop is running.")
    config: Dict[str, Any] = Field(default_factory=dict, description="Effective engine configuration.")
    timestamp: str = Field(..., description="UTC timestamp when the diagnostics were produced (ISO string).")


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    description="Basic service liveness check used by deployment and dashboards.",
    operation_id="health_check",
)
def health_check() -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())


@router.get(
    "/api/health/engine",
    response_model=EngineDiagnosticsResponse,
    summary="Alert engine diagnostics",
    description="Reports engine running state, in-memory counts and the effective configuration.",
    operation_id="engine_diagnostics",
)
def engine_diagnostics(request: Request) -> EngineDiagnosticsResponse:
    """Return alert engine diagnostics."""
    state = get_state(request.app)
    task = state.retention_task
    return EngineDiagnosticsResponse(
        running=state.engine.running,
        stored_alerts=len(state.engine.store),
        scheduled_auto_resolves=state.engine.scheduled_count(),
        retention_loop_active=bool(task is not None and not task.done()),  # type: ignore[attr-defined]
        config=state.config.as_dict(),
        timestamp=utc_now().isoformat(),
    )
