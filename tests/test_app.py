"""Tests for application wiring: CLI, persistence hooks and HTTP endpoints."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from aiohttp import test_utils

from crypto_sentinel.app import SentinelApp, parse_args
from crypto_sentinel.config import AppConfig
from crypto_sentinel.core.errors import ValidationError
from crypto_sentinel.monitors.registry import MonitorRegistry
from crypto_sentinel.storage.memory_repository import InMemoryRepository


@pytest.fixture
def app(repository: InMemoryRepository) -> SentinelApp:
    return SentinelApp(AppConfig(), dry_run=True, repository=repository)


class TestParseArgs:
    def test_defaults(self) -> None:
        args = parse_args([])
        assert not args.debug
        assert not args.dry_run
        assert not args.memory
        assert args.monitors is None

    def test_flags(self) -> None:
        args = parse_args(["--debug", "--dry-run", "--memory", "--monitors", "m.json"])
        assert args.debug and args.dry_run and args.memory
        assert args.monitors == Path("m.json")


class TestSetup:
    @pytest.mark.asyncio
    async def test_restores_persisted_monitors(
        self, app: SentinelApp, repository: InMemoryRepository
    ) -> None:
        seeded = MonitorRegistry().create({"id": "sol", "keywords": ["SOL"]})
        seeded.state.total_mentions = 12
        await repository.save_monitor_state(seeded)

        await app.setup()
        try:
            restored = app.registry.require("sol")
            assert restored.state.total_mentions == 12
            assert app.scheduler.is_scheduled("sol")
        finally:
            await app.shutdown()

    @pytest.mark.asyncio
    async def test_monitor_file_is_imported_and_persisted(
        self, app: SentinelApp, repository: InMemoryRepository, tmp_path: Path
    ) -> None:
        path = tmp_path / "monitors.json"
        path.write_text(
            json.dumps([{"project_name": "Solana", "keywords": ["SOL"]}]), encoding="utf-8"
        )

        await app.setup(path)
        try:
            await asyncio.sleep(0.01)
            (monitor,) = app.registry.list()
            assert monitor.id in repository.monitors

            app.registry.delete(monitor.id)
            await asyncio.sleep(0.01)
            assert monitor.id not in repository.monitors
        finally:
            await app.shutdown()

    @pytest.mark.asyncio
    async def test_restart_does_not_duplicate_file_monitors(
        self, repository: InMemoryRepository, tmp_path: Path
    ) -> None:
        path = tmp_path / "monitors.json"
        path.write_text(
            json.dumps([{"project_name": "Solana", "keywords": ["SOL"]}]), encoding="utf-8"
        )

        for _ in range(3):
            app = SentinelApp(AppConfig(), dry_run=True, repository=repository)
            await app.setup(path)
            await app.shutdown()

        assert len(repository.monitors) == 1
        assert len(app.registry) == 1

    @pytest.mark.asyncio
    async def test_invalid_monitor_file_raises(self, app: SentinelApp, tmp_path: Path) -> None:
        path = tmp_path / "monitors.json"
        path.write_text(json.dumps({"monitors": [{"keywords": []}]}), encoding="utf-8")

        with pytest.raises(ValidationError):
            app.load_monitors_file(path)
        assert len(app.registry) == 0

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(
        self, app: SentinelApp, repository: InMemoryRepository
    ) -> None:
        await app.setup()
        await app.shutdown()
        await app.shutdown()

        assert not await repository.is_connected()
        assert not app.dispatcher.running


class TestHttpEndpoints:
    @pytest.mark.asyncio
    async def test_health_reports_components(self, app: SentinelApp) -> None:
        await app.setup()
        app.registry.create({"keywords": ["SOL"]})
        client = test_utils.TestClient(test_utils.TestServer(app.build_web_app()))
        await client.start_server()
        try:
            resp = await client.get("/health")
            body = await resp.json()
        finally:
            await client.close()
            await app.shutdown()

        assert resp.status == 200
        assert body["status"] == "ok"
        assert body["monitors_total"] == 1
        assert body["db_connected"] is True
        assert "twitter/search" in body["rate_limits"]
        assert body["scheduler"]["queued"] == 1

    @pytest.mark.asyncio
    async def test_health_degraded_without_storage(self, app: SentinelApp) -> None:
        client = test_utils.TestClient(test_utils.TestServer(app.build_web_app()))
        await client.start_server()
        try:
            resp = await client.get("/")
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 503
        assert body["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_sentiment_rejects_bad_parameters(self, app: SentinelApp) -> None:
        client = test_utils.TestClient(test_utils.TestServer(app.build_web_app()))
        await client.start_server()
        try:
            bad_timeframe = await client.get("/sentiment/solana?timeframe=3w")
            bad_size = await client.get("/sentiment/solana?sample_size=many")
        finally:
            await client.close()

        assert bad_timeframe.status == 400
        assert bad_size.status == 400
