from __future__ import annotations

import threading
import time
from collections.abc import AsyncIterator, Iterator
from datetime import datetime, timedelta, timezone
from typing import Callable, List

import httpx
import pytest

from src.alerting.config import EngineConfig
from src.alerting.engine.events import ALL_EVENTS, LifecycleEvent
from src.alerting.engine.lifecycle import AlertEngine
from src.alerting.schemas.alerts import AlertCreate


class FakeClock:
    """Manually advanced UTC clock for dedup-window tests."""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds)
            return self._now


class EventRecorder:
    """Collects every published lifecycle event."""

    def __init__(self) -> None:
        self.events: List[LifecycleEvent] = []
        self._lock = threading.Lock()

    def __call__(self, event: LifecycleEvent) -> None:
        with self._lock:
            self.events.append(event)

    def names(self) -> List[str]:
        with self._lock:
            return [e.name for e in self.events]

    def of(self, name: str) -> List[LifecycleEvent]:
        with self._lock:
            return [e for e in self.events if e.name == name]


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is true or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_attrs(**overrides) -> AlertCreate:
    """Alert attributes for the canonical HighCPU alert, with overrides."""
    data = {
        "tenantId": "t1",
        "source": "cpu",
        "sourceId": "host1",
        "name": "HighCPU",
        "message": "cpu>90%",
    }
    data.update(overrides)
    return AlertCreate(**data)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> EngineConfig:
    """Engine defaults with a small per-rule capacity so pruning is easy to hit."""
    return EngineConfig(max_alerts_per_rule=3)


@pytest.fixture
def engine(config: EngineConfig, clock: FakeClock) -> Iterator[AlertEngine]:
    """A started engine on a fake clock; stopped after the test."""
    eng = AlertEngine(config, clock=clock)
    eng.start()
    try:
        yield eng
    finally:
        eng.stop()


@pytest.fixture
def recorder(engine: AlertEngine) -> EventRecorder:
    rec = EventRecorder()
    engine.bus.subscribe(ALL_EVENTS, rec)
    return rec


@pytest.fixture
def app(config: EngineConfig):
    """
    FastAPI app fixture around a fresh engine.

    httpx's ASGITransport does not run startup/shutdown hooks, so the engine is
    started and stopped here.
    """
    from src.alerting.main import create_app
    from src.alerting.state import get_state

    fastapi_app = create_app(config)
    state = get_state(fastapi_app)
    state.engine.start()
    try:
        yield fastapi_app
    finally:
        state.engine.stop()


@pytest.fixture
async def async_client(app) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client bound to the FastAPI ASGI app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
