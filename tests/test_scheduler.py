"""Tests for the tick-driven scheduler."""

from __future__ import annotations

import asyncio

import pytest

from crypto_sentinel.core.models import EvaluationResult
from crypto_sentinel.core.types import EvaluationOutcome
from crypto_sentinel.engine.scheduler import Scheduler
from crypto_sentinel.monitors.registry import MonitorRegistry

from tests.conftest import MutableClock


class StubEvaluator:
    """Records evaluation order; optionally blocks until released."""

    def __init__(self, clock: MutableClock) -> None:
        self._clock = clock
        self.calls: list[str] = []
        self.fail_for: set[str] = set()
        self.gate: asyncio.Event | None = None
        self._in_flight: set[str] = set()
        self.evaluations_run = 0
        self.alerts_fired = 0

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def is_in_flight(self, monitor_id: str) -> bool:
        return monitor_id in self._in_flight

    async def evaluate(self, monitor_id: str) -> EvaluationResult:
        self.calls.append(monitor_id)
        self._in_flight.add(monitor_id)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if monitor_id in self.fail_for:
                raise RuntimeError("evaluator bug")
            self.evaluations_run += 1
            return EvaluationResult(monitor_id, EvaluationOutcome.COMPLETED, self._clock())
        finally:
            self._in_flight.discard(monitor_id)


def _monitor(registry: MonitorRegistry, name: str, active: bool = True) -> str:
    return registry.create({"id": name, "keywords": [name], "is_active": active}).id


@pytest.fixture
def evaluator(clock: MutableClock) -> StubEvaluator:
    return StubEvaluator(clock)


@pytest.fixture
def scheduler(registry: MonitorRegistry, evaluator: StubEvaluator, clock: MutableClock) -> Scheduler:
    return Scheduler(
        registry,
        evaluator,
        tick_interval=30,
        monitor_interval=300,
        batch_size=2,
        clock=clock,
    )


class TestQueueing:
    @pytest.mark.asyncio
    async def test_new_monitors_are_enqueued_due_now(
        self, scheduler: Scheduler, registry: MonitorRegistry, clock: MutableClock
    ) -> None:
        monitor_id = _monitor(registry, "a")
        assert scheduler.is_scheduled(monitor_id)
        assert scheduler.due_at(monitor_id) == clock.now

    @pytest.mark.asyncio
    async def test_inactive_monitors_are_not_enqueued(
        self, scheduler: Scheduler, registry: MonitorRegistry
    ) -> None:
        monitor_id = _monitor(registry, "a", active=False)
        assert not scheduler.is_scheduled(monitor_id)

    @pytest.mark.asyncio
    async def test_batch_is_bounded_and_fifo(
        self, scheduler: Scheduler, registry: MonitorRegistry, evaluator: StubEvaluator
    ) -> None:
        for name in ("a", "b", "c"):
            _monitor(registry, name)

        await scheduler.tick()
        assert evaluator.calls == ["a", "b"]

        await scheduler.tick()
        assert evaluator.calls == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_processed_monitors_requeued_at_interval(
        self,
        scheduler: Scheduler,
        registry: MonitorRegistry,
        evaluator: StubEvaluator,
        clock: MutableClock,
    ) -> None:
        monitor_id = _monitor(registry, "a")
        start = clock.now

        await scheduler.tick()
        assert (scheduler.due_at(monitor_id) - start).total_seconds() == 300

        clock.advance(30)
        await scheduler.tick()
        assert evaluator.calls == ["a"]

        clock.advance(270)
        await scheduler.tick()
        assert evaluator.calls == ["a", "a"]

    @pytest.mark.asyncio
    async def test_not_due_monitors_keep_their_place(
        self,
        scheduler: Scheduler,
        registry: MonitorRegistry,
        evaluator: StubEvaluator,
        clock: MutableClock,
    ) -> None:
        _monitor(registry, "a")
        scheduler.enqueue("a", clock.now.replace(year=2100))
        _monitor(registry, "b")

        await scheduler.tick()

        assert evaluator.calls == ["b"]
        assert scheduler.is_scheduled("a")


class TestRegistryEvents:
    @pytest.mark.asyncio
    async def test_delete_cancels(self, scheduler: Scheduler, registry: MonitorRegistry, evaluator) -> None:
        monitor_id = _monitor(registry, "a")
        registry.delete(monitor_id)

        await scheduler.tick()

        assert not scheduler.is_scheduled(monitor_id)
        assert evaluator.calls == []

    @pytest.mark.asyncio
    async def test_deactivate_cancels_and_reactivate_enqueues(
        self, scheduler: Scheduler, registry: MonitorRegistry
    ) -> None:
        monitor_id = _monitor(registry, "a")

        registry.toggle(monitor_id, False)
        assert not scheduler.is_scheduled(monitor_id)

        registry.toggle(monitor_id, True)
        assert scheduler.is_scheduled(monitor_id)

    @pytest.mark.asyncio
    async def test_deactivated_during_pass_is_not_requeued(
        self, scheduler: Scheduler, registry: MonitorRegistry, evaluator: StubEvaluator
    ) -> None:
        monitor_id = _monitor(registry, "a")
        evaluator.gate = asyncio.Event()

        tick = asyncio.create_task(scheduler.tick())
        await asyncio.sleep(0.01)
        registry.toggle(monitor_id, False)
        evaluator.gate.set()
        await tick

        assert not scheduler.is_scheduled(monitor_id)


class TestInFlight:
    @pytest.mark.asyncio
    async def test_in_flight_monitor_is_not_requeued_by_updates(
        self, scheduler: Scheduler, registry: MonitorRegistry, evaluator: StubEvaluator
    ) -> None:
        monitor_id = _monitor(registry, "a")
        evaluator.gate = asyncio.Event()

        tick = asyncio.create_task(scheduler.tick())
        await asyncio.sleep(0.01)
        assert evaluator.is_in_flight(monitor_id)

        registry.update(monitor_id, {"keywords": ["a", "b"]})
        assert not scheduler.is_scheduled(monitor_id)

        evaluator.gate.set()
        await tick
        assert evaluator.calls == [monitor_id]
        assert scheduler.is_scheduled(monitor_id)

    @pytest.mark.asyncio
    async def test_in_flight_monitor_is_skipped_at_tick(
        self, scheduler: Scheduler, registry: MonitorRegistry, evaluator: StubEvaluator
    ) -> None:
        monitor_id = _monitor(registry, "a")
        evaluator._in_flight.add(monitor_id)

        await scheduler.tick()

        assert evaluator.calls == []
        assert scheduler.is_scheduled(monitor_id)


class TestResilience:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_batch(
        self, scheduler: Scheduler, registry: MonitorRegistry, evaluator: StubEvaluator
    ) -> None:
        _monitor(registry, "a")
        _monitor(registry, "b")
        evaluator.fail_for = {"a"}

        results = await scheduler.tick()

        assert [r.monitor_id for r in results] == ["b"]
        assert scheduler.is_scheduled("a")
        assert scheduler.is_scheduled("b")

    @pytest.mark.asyncio
    async def test_run_stops_on_request(
        self, registry: MonitorRegistry, evaluator: StubEvaluator, clock: MutableClock
    ) -> None:
        scheduler = Scheduler(registry, evaluator, tick_interval=0.01, clock=clock)
        _monitor(registry, "a")

        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.05)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1)

        assert evaluator.calls == ["a"]
        assert scheduler.stats()["ticks"] >= 2

    @pytest.mark.asyncio
    async def test_stats(self, scheduler: Scheduler, registry: MonitorRegistry) -> None:
        _monitor(registry, "a")
        _monitor(registry, "b", active=False)

        stats = scheduler.stats()

        assert stats["queued"] == 1
        assert stats["monitors"] == 2
        assert stats["active_monitors"] == 1
        assert stats["ticks"] == 0
