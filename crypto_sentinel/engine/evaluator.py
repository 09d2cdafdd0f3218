"""Per-monitor evaluation state machine.

One call to ``AlertEvaluator.evaluate`` walks a monitor through
``Idle -> Fetching -> Scoring -> Deciding -> Idle``. The evaluator is the
only writer of ``MonitorState``; a monitor is never evaluated concurrently
with itself.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from crypto_sentinel import metrics
from crypto_sentinel.core.errors import StateCorruption
from crypto_sentinel.core.models import (
    Alert,
    DeliveryResult,
    EvaluationResult,
    Monitor,
    MonitorConfig,
    MonitorState,
    ProjectSentimentSnapshot,
    SentimentPoint,
    VolumePoint,
)
from crypto_sentinel.core.types import Clock, EvaluationOutcome, MonitorPhase
from crypto_sentinel.core.utils import utcnow
from crypto_sentinel.engine.conditions import ConditionContext, evaluate_conditions
from crypto_sentinel.engine.events import AlertBus
from crypto_sentinel.monitors.registry import MonitorRegistry
from crypto_sentinel.ratelimit import RateLimitTracker
from crypto_sentinel.sentiment.aggregator import SentimentAggregator
from crypto_sentinel.sources.adapter import MentionSourceAdapter
from crypto_sentinel.storage.base_repository import BaseRepository

if TYPE_CHECKING:
    from crypto_sentinel.notifier.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


class AlertEvaluator:
    """Runs evaluation passes and fires alerts for registered monitors."""

    def __init__(
        self,
        registry: MonitorRegistry,
        adapter: MentionSourceAdapter,
        rate_limits: RateLimitTracker,
        aggregator: SentimentAggregator,
        repository: BaseRepository,
        dispatcher: NotificationDispatcher | None = None,
        bus: AlertBus | None = None,
        *,
        cooldown_seconds: float = 300,
        default_lookback_seconds: float = 3600,
        clock: Clock = utcnow,
    ) -> None:
        self._registry = registry
        self._adapter = adapter
        self._rate_limits = rate_limits
        self._aggregator = aggregator
        self._repo = repository
        self._dispatcher = dispatcher
        self._bus = bus or AlertBus()
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._lookback = timedelta(seconds=default_lookback_seconds)
        self._clock = clock
        self._in_flight: set[str] = set()

        self.evaluations_run = 0
        self.alerts_fired = 0

    @property
    def bus(self) -> AlertBus:
        return self._bus

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def is_in_flight(self, monitor_id: str) -> bool:
        return monitor_id in self._in_flight

    def in_cooldown(self, state: MonitorState, now: datetime | None = None) -> bool:
        if state.last_alert_at is None:
            return False
        return (now or self._clock()) - state.last_alert_at < self._cooldown

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate(self, monitor_id: str) -> EvaluationResult:
        """Run one pass for *monitor_id*. Never raises for runtime failures."""
        started = self._clock()
        monitor = self._registry.get(monitor_id)
        if monitor is None or not monitor.is_active:
            return EvaluationResult(monitor_id, EvaluationOutcome.SKIPPED, started)
        if monitor_id in self._in_flight:
            logger.debug("Monitor %s already in flight; skipping", monitor_id)
            return EvaluationResult(monitor_id, EvaluationOutcome.SKIPPED, started)

        self._in_flight.add(monitor_id)
        try:
            result = await self._run(monitor, started)
        finally:
            self._in_flight.discard(monitor_id)

        self.evaluations_run += 1
        metrics.EVALUATIONS_TOTAL.labels(outcome=str(result.outcome)).inc()
        return result

    async def _run(self, monitor: Monitor, now: datetime) -> EvaluationResult:
        # Config is frozen; holding the reference pins it for this pass.
        config = monitor.config
        state = monitor.state
        result = EvaluationResult(config.id, EvaluationOutcome.COMPLETED, now)

        try:
            if state.phase is not MonitorPhase.IDLE:
                raise StateCorruption(
                    f"monitor {config.id} found in phase {state.phase} at tick start"
                )

            # -- Fetching ------------------------------------------------
            state.phase = MonitorPhase.FETCHING
            if not self._rate_limits.try_reserve(
                self._adapter.provider, self._adapter.endpoint, self._adapter.request_cost
            ):
                logger.info("Monitor %s rate limited; no new data this cycle", config.id)
                state.last_checked_at = now
                result.outcome = EvaluationOutcome.RATE_LIMITED
                return result

            window = self._adapter.query_window(
                state.last_processed_at or now - self._lookback, now
            )
            fetched = await self._adapter.fetch_mentions(config.keywords, window, config.filters)
            if not fetched.ok:
                logger.info(
                    "Monitor %s source unavailable; no new data this cycle: %s",
                    config.id,
                    fetched.error,
                )
                state.last_checked_at = now
                result.outcome = EvaluationOutcome.SOURCE_UNAVAILABLE
                result.error = str(fetched.error)
                return result

            result.fetched = len(fetched.raw)
            result.filtered = len(fetched.mentions)
            metrics.MENTIONS_FETCHED_TOTAL.inc(len(fetched.raw))
            if fetched.raw:
                await self._repo.upsert_mentions(fetched.raw, project=config.display_name)

            # -- Scoring -------------------------------------------------
            state.phase = MonitorPhase.SCORING
            snapshot = await self._aggregator.score_project(fetched.mentions)
            result.snapshot = snapshot

            # -- Deciding ------------------------------------------------
            state.phase = MonitorPhase.DECIDING
            if not self._registry.is_active(config.id):
                logger.info("Monitor %s removed or deactivated mid-pass; discarding", config.id)
                result.outcome = EvaluationOutcome.DISCARDED
                return result

            ctx = ConditionContext(
                config=config,
                snapshot=snapshot,
                mention_count=len(fetched.mentions),
                volume_history=tuple(state.volume_history),
                baseline=state.sentiment_baseline,
                now=now,
            )
            candidates = evaluate_conditions(ctx)
            if candidates and self.in_cooldown(state, now):
                logger.info(
                    "Monitor %s cooling down; suppressed %d alert(s)",
                    config.id,
                    len(candidates),
                )
                result.suppressed = True
                metrics.ALERTS_SUPPRESSED_TOTAL.inc()
                alerts: list[Alert] = []
            else:
                alerts = candidates

            # Changes go live only once the new state is stored
            staged = dataclasses.replace(state, phase=MonitorPhase.IDLE)
            self._commit(staged, snapshot, len(fetched.mentions), alerts, window.end, now)
            current = self._registry.get(config.id) or monitor
            await self._repo.save_monitor_state(Monitor(config=current.config, state=staged))
            _adopt(state, staged)
            result.alerts = alerts

            for alert in alerts:
                await self._fire(alert, config)
            return result

        except Exception as exc:
            logger.exception("Evaluation failed for monitor %s", config.id)
            state.last_error = f"{type(exc).__name__}: {exc}"
            result.outcome = EvaluationOutcome.FAILED
            result.error = state.last_error
            return result
        finally:
            state.phase = MonitorPhase.IDLE

    @staticmethod
    def _commit(
        state: MonitorState,
        snapshot: ProjectSentimentSnapshot,
        mention_count: int,
        alerts: list[Alert],
        processed_until: datetime,
        now: datetime,
    ) -> None:
        if state.last_processed_at is None or processed_until > state.last_processed_at:
            state.last_processed_at = processed_until
        state.last_checked_at = now
        state.last_error = None
        state.total_mentions += mention_count
        state.volume_history.append(VolumePoint(now, mention_count))

        has_sample = snapshot.total_mentions > 0
        if has_sample:
            state.sentiment_history.append(
                SentimentPoint(now, snapshot.average_score, snapshot.confidence)
            )
            if state.sentiment_baseline is None:
                state.sentiment_baseline = snapshot.average_score

        if alerts:
            state.last_alert_at = now
            state.alerts_triggered += len(alerts)
            if has_sample:
                state.sentiment_baseline = snapshot.average_score

    async def _fire(self, alert: Alert, config: MonitorConfig) -> None:
        self.alerts_fired += 1
        metrics.ALERTS_TOTAL.labels(type=str(alert.type), severity=str(alert.severity)).inc()
        logger.info(
            "Alert fired for %s: %s [%s] %s",
            config.id,
            alert.type,
            alert.severity,
            alert.message,
        )
        try:
            await self._repo.append_alert(alert)
        except Exception:
            logger.exception("Failed to store alert %s", alert.id)
        await self._bus.publish(alert)
        if self._dispatcher is not None:
            future = self._dispatcher.enqueue(alert, config)
            future.add_done_callback(_on_delivered)


def _adopt(state: MonitorState, staged: MonitorState) -> None:
    """Copy a committed state into the instance the registry shares."""
    for f in dataclasses.fields(MonitorState):
        if f.name != "phase":
            setattr(state, f.name, getattr(staged, f.name))


def _on_delivered(future: asyncio.Future[DeliveryResult]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("Delivery failed: %s", exc)
        return
    result = future.result()
    if result.failures:
        logger.debug(
            "Alert %s undelivered on %d channel(s)", result.alert_id, len(result.failures)
        )
