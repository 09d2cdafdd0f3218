"""Tests for the in-memory repository and monitor persistence round-trips."""

from __future__ import annotations

from datetime import timedelta

import pytest

from crypto_sentinel.core.models import Alert, SentimentPoint, VolumePoint
from crypto_sentinel.core.types import AlertType, MonitorPhase, Severity
from crypto_sentinel.monitors.registry import MonitorRegistry
from crypto_sentinel.storage.memory_repository import InMemoryRepository

from tests.conftest import T0, make_mention


def _alert(monitor_id: str, minutes: int) -> Alert:
    return Alert(
        monitor_id=monitor_id,
        type=AlertType.NEW_MENTION,
        severity=Severity.LOW,
        title="Monitor Alert: SOL",
        message=f"{minutes} new mentions",
        trigger_data={"count": minutes},
        timestamp=T0 + timedelta(minutes=minutes),
    )


class TestMentions:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, repository: InMemoryRepository) -> None:
        mention = make_mention(0)

        assert await repository.upsert_mentions([mention], project="SOL") == 1
        assert await repository.upsert_mentions([mention], project="SOL") == 0
        assert len(repository.mentions) == 1

    @pytest.mark.asyncio
    async def test_upsert_keeps_latest_fields(self, repository: InMemoryRepository) -> None:
        await repository.upsert_mentions([make_mention(0, likes=1)])
        await repository.upsert_mentions([make_mention(0, likes=50)])

        _, stored = repository.mentions["m0"]
        assert stored.metrics.likes == 50

    @pytest.mark.asyncio
    async def test_cleanup_old_mentions(self, repository: InMemoryRepository) -> None:
        old = make_mention(0, created_at=T0 - timedelta(days=10))
        fresh = make_mention(1, created_at=T0)
        await repository.upsert_mentions([old, fresh])

        deleted = await repository.cleanup_old_mentions(T0 - timedelta(days=7))

        assert deleted == 1
        assert list(repository.mentions) == ["m1"]


class TestMonitors:
    @pytest.mark.asyncio
    async def test_state_survives_round_trip(
        self, repository: InMemoryRepository, registry: MonitorRegistry
    ) -> None:
        monitor = registry.create({"project_name": "Solana", "keywords": ["SOL"]})
        state = monitor.state
        state.last_processed_at = T0
        state.last_alert_at = T0 - timedelta(minutes=5)
        state.sentiment_baseline = 0.62
        state.volume_history.append(VolumePoint(T0, 40))
        state.sentiment_history.append(SentimentPoint(T0, 0.62, 0.8))
        state.total_mentions = 40
        state.alerts_triggered = 2
        state.phase = MonitorPhase.DECIDING

        await repository.save_monitor_state(monitor)
        (loaded,) = await repository.load_active_monitors(history_size=50)

        assert loaded.config == monitor.config
        assert loaded.state.last_processed_at == T0
        assert loaded.state.sentiment_baseline == 0.62
        assert list(loaded.state.volume_history) == [VolumePoint(T0, 40)]
        assert list(loaded.state.sentiment_history) == [SentimentPoint(T0, 0.62, 0.8)]
        assert loaded.state.alerts_triggered == 2
        assert loaded.state.volume_history.maxlen == 50
        assert loaded.state.phase is MonitorPhase.IDLE

    @pytest.mark.asyncio
    async def test_saved_document_is_detached(
        self, repository: InMemoryRepository, registry: MonitorRegistry
    ) -> None:
        monitor = registry.create({"keywords": ["SOL"]})
        await repository.save_monitor_state(monitor)

        monitor.state.total_mentions = 999
        (loaded,) = await repository.load_active_monitors()

        assert loaded.state.total_mentions == 0
        assert loaded.state is not monitor.state

    @pytest.mark.asyncio
    async def test_inactive_monitors_are_not_loaded(
        self, repository: InMemoryRepository, registry: MonitorRegistry
    ) -> None:
        active = registry.create({"keywords": ["SOL"]})
        paused = registry.create({"keywords": ["ETH"], "is_active": False})
        await repository.save_monitor_state(active)
        await repository.save_monitor_state(paused)

        loaded = await repository.load_active_monitors()

        assert [m.id for m in loaded] == [active.id]

    @pytest.mark.asyncio
    async def test_delete_monitor(
        self, repository: InMemoryRepository, registry: MonitorRegistry
    ) -> None:
        monitor = registry.create({"keywords": ["SOL"]})
        await repository.save_monitor_state(monitor)

        await repository.delete_monitor(monitor.id)
        await repository.delete_monitor("missing")

        assert await repository.load_active_monitors() == []


class TestAlerts:
    @pytest.mark.asyncio
    async def test_list_most_recent_first(self, repository: InMemoryRepository) -> None:
        for minutes in (1, 3, 2):
            await repository.append_alert(_alert("a", minutes))
        await repository.append_alert(_alert("b", 10))

        alerts = await repository.list_alerts("a")

        assert [a.message for a in alerts] == ["3 new mentions", "2 new mentions", "1 new mentions"]

    @pytest.mark.asyncio
    async def test_limit_and_all_monitors(self, repository: InMemoryRepository) -> None:
        for minutes in range(5):
            await repository.append_alert(_alert("a" if minutes % 2 else "b", minutes))

        alerts = await repository.list_alerts(limit=2)

        assert [a.timestamp for a in alerts] == [
            T0 + timedelta(minutes=4),
            T0 + timedelta(minutes=3),
        ]

    @pytest.mark.asyncio
    async def test_connection_flag(self, repository: InMemoryRepository) -> None:
        assert not await repository.is_connected()
        await repository.connect()
        assert await repository.is_connected()
        await repository.close()
        assert not await repository.is_connected()
