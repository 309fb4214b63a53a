from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class AutoResolveScheduler:
    """
    Cancelable per-alert deferred actions run by one worker thread.

    Pending entries live in a heap of (fire_at, seq, alert_id, generation).
    Each alert id has at most one armed generation; cancel/re-arm bump or
    drop it, and heap entries whose generation is no longer armed are
    skipped when they come due.

    The action is called as action(alert_id, generation) outside the scheduler
    lock, so it may take other locks (the engine's store lock) and call back
    into cancel(). A due entry stays armed until the action consume()s it, and
    is retired once the action returns either way. A failing action is
    logged and reported through `on_error`; the worker keeps running.
    """

    def __init__(
        self,
        action: Callable[[str, int], object],
        on_error: Optional[Callable[[str, BaseException], None]] = None,
    ) -> None:
        self._action = action
        self._on_error = on_error
        self._cond = threading.Condition()
        self._heap: List[Tuple[float, int, str, int]] = []
        self._armed: Dict[str, int] = {}
        self._seq = itertools.count()
        self._generations = itertools.count(1)
        self._thread: Optional[threading.Thread] = None
        self._running = False
        # Bumped on every start so a worker left over from an earlier run exits.
        self._epoch = 0

    @property
    def running(self) -> bool:
        return self._running

    def pending(self) -> int:
        """Number of armed (not yet fired or canceled) actions."""
        with self._cond:
            return len(self._armed)

    def is_armed(self, alert_id: str) -> bool:
        with self._cond:
            return alert_id in self._armed

    def start(self) -> None:
        with self._cond:
            if self._running:
                return
            self._running = True
            self._epoch += 1
            self._thread = threading.Thread(
                target=self._run, args=(self._epoch,), name="alert-auto-resolve", daemon=True
            )
            self._thread.start()
        logger.info("Auto-resolve scheduler started")

    def stop(self) -> None:
        """Cancel every pending action without running it and stop the worker. Idempotent."""
        with self._cond:
            if not self._running:
                return
            self._running = False
            dropped = len(self._armed)
            self._heap.clear()
            self._armed.clear()
            thread = self._thread
            self._thread = None
            self._cond.notify_all()

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        logger.info("Auto-resolve scheduler stopped (canceled=%s)", dropped)

    def arm(self, alert_id: str, delay_sec: float) -> bool:
        """Schedule the action for alert_id after delay_sec, replacing any earlier arming."""
        with self._cond:
            if not self._running:
                logger.debug("Scheduler stopped; not arming auto-resolve for alertId=%s", alert_id)
                return False
            generation = next(self._generations)
            self._armed[alert_id] = generation
            fire_at = time.monotonic() + max(0.0, float(delay_sec))
            heapq.heappush(self._heap, (fire_at, next(self._seq), alert_id, generation))
            self._cond.notify_all()
        logger.debug("Armed auto-resolve for alertId=%s in %.3fs", alert_id, delay_sec)
        return True

    def cancel(self, alert_id: str) -> bool:
        """Disarm alert_id. The stale heap entry is dropped lazily when it comes due."""
        with self._cond:
            return self._armed.pop(alert_id, None) is not None

    def consume(self, alert_id: str, generation: int) -> bool:
        """
        Claim a due firing. False when it was canceled, re-armed or dropped by stop() since it came due.

        The action calls this under whatever lock orders it against cancel(), so a
        cancel that wins that lock always prevents the firing.
        """
        with self._cond:
            if self._armed.get(alert_id) != generation:
                return False
            del self._armed[alert_id]
            return True

    def _next_due(self, epoch: int) -> Optional[Tuple[str, int]]:
        """Block until an armed entry is due and return (alert_id, generation); None once stopped."""
        with self._cond:
            while self._running and self._epoch == epoch:
                if not self._heap:
                    self._cond.wait()
                    continue
                fire_at, _, alert_id, generation = self._heap[0]
                wait_for = fire_at - time.monotonic()
                if wait_for > 0:
                    self._cond.wait(timeout=wait_for)
                    continue
                heapq.heappop(self._heap)
                if self._armed.get(alert_id) != generation:
                    continue
                # Stays armed until the action consumes it.
                return alert_id, generation
            return None

    def _run(self, epoch: int) -> None:
        while True:
            due = self._next_due(epoch)
            if due is None:
                return
            alert_id, generation = due
            try:
                self._action(alert_id, generation)
            except Exception as exc:
                logger.exception("Auto-resolve action failed for alertId=%s", alert_id)
                if self._on_error is not None:
                    try:
                        self._on_error(alert_id, exc)
                    except Exception:
                        logger.exception("Auto-resolve error handler failed for alertId=%s", alert_id)
            finally:
                # An action that did not consume its firing still retires it.
                with self._cond:
                    if self._armed.get(alert_id) == generation:
                        del self._armed[alert_id]
