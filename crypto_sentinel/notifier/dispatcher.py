"""Ordered, retrying delivery of fired alerts to notification channels."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from crypto_sentinel import metrics
from crypto_sentinel.config import AppConfig
from crypto_sentinel.core.models import (
    Alert,
    ChannelDelivery,
    DeliveryResult,
    MonitorConfig,
)
from crypto_sentinel.core.types import Channel
from crypto_sentinel.notifier.base_channel import BaseChannel
from crypto_sentinel.notifier.channels import (
    EmailChannel,
    LogChannel,
    TelegramChannel,
    WebhookChannel,
)

logger = logging.getLogger(__name__)

_Job = tuple[Alert, MonitorConfig, "asyncio.Future[DeliveryResult]"]


class NotificationDispatcher:
    """Single-worker queue delivering alerts in the order they were fired.

    Each (channel, target) pair is retried up to ``max_attempts`` times.
    A target that still fails is recorded as undelivered and logged; it
    never blocks other targets or later alerts.
    """

    def __init__(
        self,
        channels: Iterable[BaseChannel],
        *,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        timeout_seconds: float = 10.0,
        dry_run: bool = False,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._channels: dict[Channel, BaseChannel] = {c.channel: c for c in channels}
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay_seconds
        self._timeout = timeout_seconds
        self._dry_run = dry_run
        self._queue: asyncio.Queue[_Job | None] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

        self.delivered_count = 0
        self.failed_count = 0

    @classmethod
    def from_config(cls, config: AppConfig, dry_run: bool = False) -> NotificationDispatcher:
        channels: list[BaseChannel] = [
            LogChannel(),
            WebhookChannel(),
            EmailChannel(config.email),
        ]
        if config.bot_notifier.enabled:
            channels.append(TelegramChannel(config.bot_notifier))
        return cls(
            channels,
            max_attempts=config.dispatch.max_attempts,
            retry_delay_seconds=config.dispatch.retry_delay_seconds,
            timeout_seconds=config.dispatch.timeout_seconds,
            dry_run=dry_run,
        )

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="dispatcher")
        logger.info(
            "Dispatcher started (channels=%s, dry_run=%s)",
            ", ".join(str(c) for c in self._channels),
            self._dry_run,
        )

    async def close(self) -> None:
        """Drain queued alerts, stop the worker and close channels."""
        if self._worker is not None:
            await self._queue.put(None)
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        for channel in self._channels.values():
            try:
                await channel.close()
            except Exception:
                logger.exception("Failed to close %s channel", channel.channel)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, alert: Alert, config: MonitorConfig) -> asyncio.Future[DeliveryResult]:
        """Queue *alert* for delivery and return a future for its result."""
        future: asyncio.Future[DeliveryResult] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((alert, config, future))
        return future

    async def dispatch(self, alert: Alert, config: MonitorConfig) -> DeliveryResult:
        """Queue *alert* and wait until every target has been attempted."""
        if not self.running:
            self.start()
        return await self.enqueue(alert, config)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                alert, config, future = job
                try:
                    result = await self._deliver(alert, config)
                except Exception as exc:
                    logger.exception("Dispatch of %s failed", alert.id)
                    if not future.done():
                        future.set_exception(exc)
                else:
                    if not future.done():
                        future.set_result(result)
            finally:
                self._queue.task_done()

    async def _deliver(self, alert: Alert, config: MonitorConfig) -> DeliveryResult:
        result = DeliveryResult(alert_id=alert.id)
        for channel_type in config.notifications.channels:
            channel = self._channels.get(channel_type)
            if channel is None:
                logger.error("Channel %s not configured; alert %s not sent", channel_type, alert.id)
                result.deliveries.append(
                    ChannelDelivery(channel_type, "", False, 0, "channel not configured")
                )
                continue

            targets = channel.targets(config)
            if not targets:
                result.deliveries.append(
                    ChannelDelivery(channel_type, "", False, 0, "no delivery target")
                )
                continue
            for target in targets:
                result.deliveries.append(await self._deliver_one(channel, alert, config, target))

        for delivery in result.deliveries:
            if delivery.delivered:
                self.delivered_count += 1
            else:
                self.failed_count += 1
        return result

    async def _deliver_one(
        self,
        channel: BaseChannel,
        alert: Alert,
        config: MonitorConfig,
        target: str,
    ) -> ChannelDelivery:
        if self._dry_run:
            logger.info(
                "[DRY-RUN] Would send %s alert %s to %s: %s",
                channel.channel,
                alert.type,
                target,
                alert.message,
            )
            return ChannelDelivery(channel.channel, target, True, 0)

        error = ""
        for attempt in range(1, self._max_attempts + 1):
            try:
                await asyncio.wait_for(
                    channel.send(alert, config, target), timeout=self._timeout
                )
            except asyncio.TimeoutError:
                error = f"timed out after {self._timeout:.1f}s"
            except Exception as exc:
                error = str(exc) or type(exc).__name__
            else:
                metrics.DELIVERIES_TOTAL.labels(channel=str(channel.channel), result="ok").inc()
                logger.debug(
                    "Delivered %s via %s to %s (attempt %d)",
                    alert.id,
                    channel.channel,
                    target,
                    attempt,
                )
                return ChannelDelivery(channel.channel, target, True, attempt)

            metrics.DELIVERIES_TOTAL.labels(channel=str(channel.channel), result="error").inc()
            logger.warning(
                "Delivery of %s via %s to %s failed (attempt %d/%d): %s",
                alert.id,
                channel.channel,
                target,
                attempt,
                self._max_attempts,
                error,
            )
            if attempt < self._max_attempts and self._retry_delay > 0:
                await asyncio.sleep(self._retry_delay)

        logger.error(
            "Giving up on %s via %s to %s after %d attempt(s): %s",
            alert.id,
            channel.channel,
            target,
            self._max_attempts,
            error,
        )
        return ChannelDelivery(channel.channel, target, False, self._max_attempts, error)
