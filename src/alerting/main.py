from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.alerting.config import EngineConfig, load_config
from src.alerting.routers import alerts, health
from src.alerting.services.alerts_retention import retention_loop
from src.alerting.state import get_state, init_state

openapi_tags = [
    {"name": "Health", "description": "Service health and engine diagnostics."},
    {"name": "Alerts", "description": "Alert lifecycle: submit, acknowledge, assign, resolve, close, suppress."},
]

logger = logging.getLogger(__name__)


def _env_frontend_url() -> str | None:
    return os.getenv("FRONTEND_URL")


def _env_cors_extra_origins() -> List[str]:
    # Comma-separated list for preview deployments, etc.
    raw = os.getenv("CORS_ALLOW_ORIGINS") or ""
    return [p.strip() for p in raw.split(",") if p.strip()]


def _allowed_origins() -> List[str]:
    origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    frontend_url = _env_frontend_url()
    if frontend_url:
        origins.append(frontend_url)
    origins.extend(_env_cors_extra_origins())

    # De-dupe while preserving order
    seen = set()
    return [o for o in origins if not (o in seen or seen.add(o))]


# PUBLIC_INTERFACE
def create_app(config: Optional[EngineConfig] = None) -> FastAPI:
    """Build the FastAPI app around a fresh alert engine (config from env unless given)."""
    app = FastAPI(
        title="Alert Lifecycle API",
        description=(
            "Alert lifecycle engine: fingerprint deduplication, a bounded status state machine, "
            "scheduled auto-resolution and capacity-bounded per-rule indexing. State is held in memory."
        ),
        version="0.1.0",
        openapi_tags=openapi_tags,
    )

    init_state(app, config or load_config())

    @app.on_event("startup")
    async def _on_startup() -> None:
        """Startup hook: start the engine (auto-resolve worker) and the optional retention loop."""
        state = get_state(app)
        state.engine.start()

        app.state._retention_shutdown = asyncio.Event()
        state.retention_task = asyncio.create_task(retention_loop(state, app.state._retention_shutdown))

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        """Shutdown hook: stop the retention loop, then the engine (pending auto-resolves are dropped)."""
        state = get_state(app)

        retention_shutdown = getattr(app.state, "_retention_shutdown", None)
        if retention_shutdown is not None:
            retention_shutdown.set()
        retention_task = state.retention_task
        if retention_task is not None:
            try:
                await asyncio.wait_for(retention_task, timeout=5.0)
            except Exception:
                logger.exception("Error stopping retention task")

        await asyncio.to_thread(state.engine.stop)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(alerts.router)
    return app


app = create_app()
