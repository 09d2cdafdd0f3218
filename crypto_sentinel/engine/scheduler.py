"""Tick-driven scheduler feeding due monitors to the evaluator."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any

from crypto_sentinel import metrics
from crypto_sentinel.core.models import EvaluationResult, Monitor
from crypto_sentinel.core.types import Clock
from crypto_sentinel.core.utils import isoformat, utcnow
from crypto_sentinel.engine.evaluator import AlertEvaluator
from crypto_sentinel.monitors.registry import MonitorRegistry, RegistryEvent

logger = logging.getLogger(__name__)


class Scheduler:
    """FIFO due-queue of monitor ids, drained in bounded concurrent batches.

    Each monitor is due every ``monitor_interval`` seconds, independently of
    the ``tick_interval`` at which the queue is checked. Registry changes are
    picked up through a listener: new and reactivated monitors are enqueued
    immediately, deleted and deactivated ones are cancelled.
    """

    def __init__(
        self,
        registry: MonitorRegistry,
        evaluator: AlertEvaluator,
        *,
        tick_interval: float = 30,
        monitor_interval: float = 300,
        batch_size: int = 5,
        clock: Clock = utcnow,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._registry = registry
        self._evaluator = evaluator
        self._tick_interval = tick_interval
        self._monitor_interval = timedelta(seconds=monitor_interval)
        self._batch_size = batch_size
        self._clock = clock

        self._queue: deque[str] = deque()
        self._due: dict[str, datetime] = {}
        self._stop = asyncio.Event()
        self._ticks = 0
        self._last_tick_at: datetime | None = None
        self._unsubscribe = registry.subscribe(self._on_registry_event)

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    def enqueue(self, monitor_id: str, due_at: datetime | None = None) -> None:
        """Schedule *monitor_id*; an existing entry is moved to *due_at*."""
        if monitor_id in self._due:
            self._queue.remove(monitor_id)
        self._due[monitor_id] = due_at or self._clock()
        self._queue.append(monitor_id)
        metrics.QUEUE_DEPTH.set(len(self._queue))

    def cancel(self, monitor_id: str) -> bool:
        if monitor_id not in self._due:
            return False
        del self._due[monitor_id]
        self._queue.remove(monitor_id)
        metrics.QUEUE_DEPTH.set(len(self._queue))
        return True

    def is_scheduled(self, monitor_id: str) -> bool:
        return monitor_id in self._due

    def due_at(self, monitor_id: str) -> datetime | None:
        return self._due.get(monitor_id)

    def enqueue_active(self) -> int:
        """Schedule every active monitor not already queued, due now."""
        count = 0
        for monitor in self._registry.active():
            if monitor.id not in self._due:
                self.enqueue(monitor.id)
                count += 1
        return count

    def _on_registry_event(self, event: RegistryEvent, monitor: Monitor) -> None:
        if event is RegistryEvent.DELETED or not monitor.is_active:
            self.cancel(monitor.id)
        elif monitor.id not in self._due and not self._evaluator.is_in_flight(monitor.id):
            self.enqueue(monitor.id)

    def _take_due(self, now: datetime) -> list[str]:
        """Pop up to ``batch_size`` due ids in FIFO order."""
        batch: list[str] = []
        kept: deque[str] = deque()
        while self._queue:
            monitor_id = self._queue.popleft()
            if len(batch) < self._batch_size and self._due[monitor_id] <= now:
                if self._evaluator.is_in_flight(monitor_id):
                    kept.append(monitor_id)
                    continue
                del self._due[monitor_id]
                batch.append(monitor_id)
            else:
                kept.append(monitor_id)
        self._queue = kept
        return batch

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> list[EvaluationResult]:
        """Evaluate one batch of due monitors concurrently."""
        now = now or self._clock()
        self._ticks += 1
        self._last_tick_at = now
        metrics.SCHEDULER_TICKS_TOTAL.inc()

        batch = self._take_due(now)
        if not batch:
            metrics.QUEUE_DEPTH.set(len(self._queue))
            return []

        logger.debug("Tick %d: evaluating %d monitor(s)", self._ticks, len(batch))
        outcomes = await asyncio.gather(
            *(self._evaluator.evaluate(monitor_id) for monitor_id in batch),
            return_exceptions=True,
        )

        results: list[EvaluationResult] = []
        next_due = now + self._monitor_interval
        for monitor_id, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Evaluation of %s raised %s", monitor_id, outcome, exc_info=outcome
                )
            else:
                results.append(outcome)
            if self._registry.is_active(monitor_id) and monitor_id not in self._due:
                self.enqueue(monitor_id, next_due)

        metrics.QUEUE_DEPTH.set(len(self._queue))
        metrics.ACTIVE_MONITORS.set(len(self._registry.active()))
        return results

    async def run(self) -> None:
        """Tick every ``tick_interval`` seconds until ``stop()`` is called."""
        self._stop.clear()
        self.enqueue_active()
        logger.info(
            "Scheduler started: tick=%ss interval=%ss batch=%d monitors=%d",
            self._tick_interval,
            self._monitor_interval.total_seconds(),
            self._batch_size,
            len(self._queue),
        )
        while not self._stop.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in scheduler tick")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._tick_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped after %d tick(s)", self._ticks)

    def stop(self) -> None:
        self._stop.set()

    def close(self) -> None:
        self.stop()
        self._unsubscribe()

    def stats(self) -> dict[str, Any]:
        return {
            "ticks": self._ticks,
            "last_tick_at": isoformat(self._last_tick_at),
            "queued": len(self._queue),
            "in_flight": len(self._evaluator.in_flight),
            "monitors": len(self._registry),
            "active_monitors": len(self._registry.active()),
            "evaluations_run": self._evaluator.evaluations_run,
            "alerts_fired": self._evaluator.alerts_fired,
        }
