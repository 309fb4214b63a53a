from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from src.alerting.config import EngineConfig
from src.alerting.engine.events import EventBus, EventFeed
from src.alerting.engine.lifecycle import AlertEngine


@dataclass
class AppState:
    """Typed app.state container for shared singletons."""

    config: EngineConfig
    engine: AlertEngine
    feed: EventFeed
    retention_task: Optional[object] = None  # asyncio.Task, but kept loose to avoid import cycles


# PUBLIC_INTERFACE
def init_state(app: FastAPI, config: EngineConfig) -> None:
    """Initialize app.state with the alert engine, its event bus and the event feed."""
    bus = EventBus()
    feed = EventFeed(maxlen=config.event_feed_size)
    feed.attach(bus)
    app.state.state = AppState(config=config, engine=AlertEngine(config, bus=bus), feed=feed)


# PUBLIC_INTERFACE
def get_state(app: FastAPI) -> AppState:
    """Fetch typed AppState from a FastAPI app."""
    return app.state.state  # type: ignore[attr-defined]
