"""Main application entry point. Orchestrates all components.

Usage:
    crypto-sentinel
    crypto-sentinel --debug
    crypto-sentinel --dry-run --memory --monitors monitors.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import time
from datetime import timedelta
from pathlib import Path
from typing import Any

from aiohttp import web
from prometheus_client import start_http_server

from crypto_sentinel import metrics
from crypto_sentinel.config import AppConfig
from crypto_sentinel.core.errors import ValidationError
from crypto_sentinel.core.models import HealthStatus, Monitor
from crypto_sentinel.core.utils import setup_logging, utcnow
from crypto_sentinel.engine import AlertBus, AlertEvaluator, Scheduler
from crypto_sentinel.monitors import MonitorRegistry, RegistryEvent
from crypto_sentinel.notifier import NotificationDispatcher
from crypto_sentinel.ratelimit import RateLimitTracker
from crypto_sentinel.sentiment import (
    OpenRouterClassifier,
    ProjectSentimentService,
    SentimentAggregator,
)
from crypto_sentinel.sources import MentionSourceAdapter, TwitterSource
from crypto_sentinel.storage import BaseRepository, InMemoryRepository, PostgresRepository

logger = logging.getLogger(__name__)


class SentinelApp:
    """Top-level orchestrator: source -> evaluator -> storage -> dispatcher."""

    def __init__(
        self,
        config: AppConfig,
        dry_run: bool = False,
        repository: BaseRepository | None = None,
    ) -> None:
        self._config = config
        self._dry_run = dry_run
        self._start_time = time.monotonic()
        self._stopping = False

        engine = config.engine
        self._repo = repository or PostgresRepository(config.database)
        self.rate_limits = RateLimitTracker.from_config(config.rate_limits)
        self._source = TwitterSource(config.source)
        self.adapter = MentionSourceAdapter(
            self._source,
            max_results=config.source.max_results,
            max_pages=config.source.max_pages,
            timeout_seconds=config.source.timeout_seconds,
        )
        self._classifier = OpenRouterClassifier(config.oracle, self.rate_limits)
        self.aggregator = SentimentAggregator.from_config(self._classifier, config.oracle)
        self.sentiment = ProjectSentimentService(
            self.adapter,
            self.aggregator,
            cache_ttl_seconds=config.oracle.cache_ttl_seconds,
        )
        self.registry = MonitorRegistry(history_size=engine.history_size)
        self.bus = AlertBus()
        self.dispatcher = NotificationDispatcher.from_config(config, dry_run=dry_run)
        self.evaluator = AlertEvaluator(
            self.registry,
            self.adapter,
            self.rate_limits,
            self.aggregator,
            self._repo,
            self.dispatcher,
            self.bus,
            cooldown_seconds=engine.cooldown_seconds,
            default_lookback_seconds=engine.default_lookback_seconds,
        )
        self.scheduler = Scheduler(
            self.registry,
            self.evaluator,
            tick_interval=engine.tick_interval_seconds,
            monitor_interval=engine.monitor_interval_seconds,
            batch_size=engine.batch_size,
        )

        # Background tasks
        self._tasks: list[asyncio.Task[Any]] = []
        self._persist_tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def setup(self, monitors_file: Path | None = None) -> None:
        """Connect storage, restore persisted monitors and import *monitors_file*."""
        logger.info("Starting Crypto Sentinel (dry_run=%s)", self._dry_run)

        # 1. Storage
        await self._repo.connect()

        # 2. Restore persisted monitors, then persist further changes
        restored = await self._repo.load_active_monitors(self._config.engine.history_size)
        for monitor in restored:
            self.registry.restore(monitor)
        logger.info("Restored %d active monitor(s) from storage", len(restored))
        self.registry.subscribe(self._persist_change)

        # 3. Monitor definitions from file
        if monitors_file is not None:
            self.load_monitors_file(monitors_file)

        # 4. Delivery worker
        self.dispatcher.start()

    async def start(self, monitors_file: Path | None = None) -> None:
        """Initialize all components and run until shut down."""
        await self.setup(monitors_file)

        # 5. Prometheus metrics endpoint
        if self._config.metrics.enabled:
            start_http_server(self._config.metrics.port)
            logger.info("Prometheus metrics on :%d/metrics", self._config.metrics.port)

        # 6. Health check endpoint
        if self._config.health.enabled:
            self._tasks.append(asyncio.create_task(self._health_server(), name="health"))

        # 7. Periodic cleanup
        self._tasks.append(asyncio.create_task(self._cleanup_loop(), name="cleanup"))

        metrics.ACTIVE_MONITORS.set(len(self.registry.active()))
        logger.info(
            "Crypto Sentinel fully started: %d monitor(s), %d active",
            len(self.registry),
            len(self.registry.active()),
        )

        # Block until stopped
        await self.scheduler.run()

    async def shutdown(self) -> None:
        """Graceful shutdown: stop scheduling, drain deliveries, close connections."""
        if self._stopping:
            return
        self._stopping = True
        logger.info("Shutting down Crypto Sentinel...")

        self.scheduler.close()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._persist_tasks:
            await asyncio.gather(*self._persist_tasks, return_exceptions=True)

        await self.dispatcher.close()
        await self._source.close()
        await self._classifier.close()
        await self._repo.close()
        logger.info("Shutdown complete")

    def load_monitors_file(self, path: Path) -> list[Monitor]:
        """Import monitor definitions from a JSON export or a plain list."""
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, list):
            data = {"monitors": data}
        try:
            created = self.registry.import_monitors(data, skip_existing=True)
        except ValidationError as exc:
            for error in exc.errors:
                logger.error("Monitor file %s: %s", path, error)
            raise
        logger.info("Imported %d monitor(s) from %s", len(created), path)
        return created

    # ------------------------------------------------------------------
    # Persistence of registry changes
    # ------------------------------------------------------------------

    def _persist_change(self, event: RegistryEvent, monitor: Monitor) -> None:
        if event is RegistryEvent.DELETED:
            coro = self._repo.delete_monitor(monitor.id)
        else:
            coro = self._repo.save_monitor_state(monitor)
        task = asyncio.get_running_loop().create_task(coro)
        self._persist_tasks.add(task)
        task.add_done_callback(self._on_persisted)

    def _on_persisted(self, task: asyncio.Task[Any]) -> None:
        self._persist_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Failed to persist monitor change", exc_info=task.exception())

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------

    async def _cleanup_loop(self) -> None:
        """Periodically drop old mentions and stale sentiment cache entries."""
        retention = timedelta(hours=self._config.engine.mention_retention_hours)

        while True:
            try:
                await asyncio.sleep(3600)
                await self._repo.cleanup_old_mentions(utcnow() - retention)
                self.sentiment.purge_expired()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in cleanup loop")
                await asyncio.sleep(60)

    # ------------------------------------------------------------------
    # Health check HTTP server
    # ------------------------------------------------------------------

    def build_web_app(self) -> web.Application:
        async def handle_health(_request: web.Request) -> web.Response:
            status = await self.get_health()
            code = 200 if status.db_connected else 503
            return web.json_response(
                {
                    "status": "ok" if code == 200 else "degraded",
                    "uptime_seconds": round(status.uptime_seconds, 1),
                    "monitors_total": status.monitors_total,
                    "monitors_active": status.monitors_active,
                    "evaluations_run": status.evaluations_run,
                    "alerts_fired": status.alerts_fired,
                    "queue_size": status.queue_size,
                    "in_flight": status.in_flight,
                    "db_connected": status.db_connected,
                    "rate_limits": status.rate_limits,
                    "scheduler": self.scheduler.stats(),
                },
                status=code,
            )

        async def handle_sentiment(request: web.Request) -> web.Response:
            project = request.match_info["project"]
            timeframe = request.query.get("timeframe", "24h")
            try:
                sample_size = int(request.query.get("sample_size", "100"))
                snapshot = await self.sentiment.analyze(
                    project, timeframe=timeframe, sample_size=sample_size
                )
            except ValueError as exc:
                return web.json_response({"error": str(exc)}, status=400)
            if snapshot is None:
                return web.json_response({"error": "source unavailable"}, status=503)
            return web.json_response({"project": project, **snapshot.to_dict()})

        app = web.Application()
        app.router.add_get("/health", handle_health)
        app.router.add_get("/", handle_health)
        app.router.add_get("/sentiment/{project}", handle_sentiment)
        return app

    async def _health_server(self) -> None:
        """HTTP health check endpoint on configured port."""
        runner = web.AppRunner(self.build_web_app())
        await runner.setup()
        site = web.TCPSite(runner, "0.0.0.0", self._config.health.port)
        await site.start()
        logger.info("Health endpoint on :%d/health", self._config.health.port)

        # Keep running until cancelled
        try:
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            await runner.cleanup()

    async def get_health(self) -> HealthStatus:
        return HealthStatus(
            uptime_seconds=time.monotonic() - self._start_time,
            monitors_total=len(self.registry),
            monitors_active=len(self.registry.active()),
            evaluations_run=self.evaluator.evaluations_run,
            alerts_fired=self.evaluator.alerts_fired,
            queue_size=self.dispatcher.queue_size,
            in_flight=len(self.evaluator.in_flight),
            db_connected=await self._repo.is_connected(),
            rate_limits=self.rate_limits.status(),
        )


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Crypto Sentinel: social mention monitoring and alerting"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log notifications instead of sending them",
    )
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Use in-process storage instead of PostgreSQL",
    )
    parser.add_argument(
        "--monitors",
        type=Path,
        metavar="FILE",
        help="Import monitor definitions from a JSON file at startup",
    )
    return parser.parse_args(argv)


async def _main() -> None:
    args = parse_args()

    config = AppConfig()

    # Override log level if --debug
    log_level = "DEBUG" if args.debug else config.log_level
    setup_logging(level=log_level, json_format=config.log_json)

    config.validate(require_database=not args.memory)

    app = SentinelApp(
        config=config,
        dry_run=args.dry_run,
        repository=InMemoryRepository() if args.memory else None,
    )

    # Graceful shutdown on SIGINT / SIGTERM
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(app.shutdown()))

    try:
        await app.start(args.monitors)
    except (KeyboardInterrupt, SystemExit):
        pass
    except ValidationError:
        raise SystemExit(1)
    finally:
        await app.shutdown()


def main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    main()
