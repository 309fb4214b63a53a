from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from src.alerting.schemas.common import utc_now
from src.alerting.state import AppState

logger = logging.getLogger(__name__)


async def _run_in_thread(func, *args, **kwargs):
    """Run engine calls in a worker thread; they may wait on the store lock."""
    return await asyncio.to_thread(func, *args, **kwargs)


async def _retention_tick(state: AppState) -> int:
    cutoff = utc_now() - timedelta(seconds=float(state.config.retention_sec))
    return await _run_in_thread(state.engine.clear_resolved, cutoff)


# PUBLIC_INTERFACE
async def retention_loop(state: AppState, shutdown_event: asyncio.Event) -> None:
    """
    Background loop that drops resolved/closed alerts once they are older than the retention window.

    - Disabled (returns immediately) when retention_sec is 0
    - Only alerts whose resolvedAt is before now - retention_sec are removed
    - Active alerts are never touched
    """
    retention = float(state.config.retention_sec)
    if retention <= 0:
        logger.info("Alert retention disabled")
        return

    interval = max(1.0, float(state.config.retention_interval_sec))
    logger.info("Alert retention started (interval=%ss, retention=%ss)", interval, retention)

    while not shutdown_event.is_set():
        tick_started = datetime.now(timezone.utc)
        try:
            cleared = await _retention_tick(state)
            if cleared:
                logger.info("Retention cleared %s alerts", cleared)
        except Exception:
            logger.exception("Alert retention tick failed")

        elapsed = (datetime.now(timezone.utc) - tick_started).total_seconds()
        sleep_for = max(0.1, interval - elapsed)
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=sleep_for)
        except asyncio.TimeoutError:
            pass

    logger.info("Alert retention stopped")
