"""Concrete notification channels: log, webhook, email and Telegram."""

from __future__ import annotations

import asyncio
import json
import logging
import smtplib
from email.message import EmailMessage

import aiohttp

from crypto_sentinel.config import BotNotifierConfig, EmailConfig
from crypto_sentinel.core.errors import DeliveryFailure
from crypto_sentinel.core.models import Alert, MonitorConfig
from crypto_sentinel.core.types import Channel, Severity
from crypto_sentinel.core.utils import truncate
from crypto_sentinel.notifier.base_channel import BaseChannel, webhook_payload

logger = logging.getLogger(__name__)

_BOT_API = "https://api.telegram.org/bot{token}/sendMessage"

_SEVERITY_ICONS = {
    Severity.LOW: "ℹ️",
    Severity.MEDIUM: "⚠️",
    Severity.HIGH: "🚨",
    Severity.CRITICAL: "🔥",
}


class LogChannel(BaseChannel):
    """Local notification: writes the alert to the application log."""

    channel = Channel.LOG

    async def send(self, alert: Alert, config: MonitorConfig, target: str) -> None:
        logger.warning(
            "[%s] %s: %s (%s)",
            str(alert.severity).upper(),
            alert.title,
            alert.message,
            alert.type,
        )


class WebhookChannel(BaseChannel):
    """POSTs the alert JSON to every webhook URL configured on the monitor."""

    channel = Channel.WEBHOOK

    def __init__(self) -> None:
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def targets(self, config: MonitorConfig) -> list[str]:
        return [w.url for w in config.webhooks]

    async def send(self, alert: Alert, config: MonitorConfig, target: str) -> None:
        headers = {"Content-Type": "application/json"}
        for webhook in config.webhooks:
            if webhook.url == target:
                headers.update(webhook.headers)
                break

        session = await self._get_session()
        body = json.dumps(webhook_payload(alert, config), default=str)
        try:
            async with session.post(target, data=body, headers=headers) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    raise DeliveryFailure(
                        f"webhook {target} returned {resp.status}: {truncate(text, 200)}"
                    )
        except aiohttp.ClientError as exc:
            raise DeliveryFailure(f"webhook {target} failed: {exc}") from exc


class EmailChannel(BaseChannel):
    """Sends the alert over SMTP to the monitor's notification address.

    When no SMTP host is configured the message is logged instead.
    """

    channel = Channel.EMAIL

    def __init__(self, config: EmailConfig) -> None:
        self._config = config

    def targets(self, config: MonitorConfig) -> list[str]:
        return [config.notifications.email] if config.notifications.email else []

    def build_message(self, alert: Alert, config: MonitorConfig, target: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"[{str(alert.severity).upper()}] {alert.title}"
        msg["From"] = self._config.sender
        msg["To"] = target
        msg.set_content(
            f"{alert.message}\n\n"
            f"Monitor: {config.display_name} ({config.id})\n"
            f"Type: {alert.type}\n"
            f"Severity: {alert.severity}\n\n"
            f"{json.dumps(alert.trigger_data, indent=2, default=str)}\n"
        )
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._config.host, self._config.port, timeout=10) as smtp:
            if self._config.use_tls:
                smtp.starttls()
            if self._config.username:
                smtp.login(self._config.username, self._config.password)
            smtp.send_message(msg)

    async def send(self, alert: Alert, config: MonitorConfig, target: str) -> None:
        msg = self.build_message(alert, config, target)
        if not self._config.enabled:
            logger.info("SMTP not configured; email to %s:\n%s", target, msg.get_content())
            return
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryFailure(f"email to {target} failed: {exc}") from exc


class TelegramChannel(BaseChannel):
    """Sends formatted alerts via Telegram Bot API to a configured chat."""

    channel = Channel.TELEGRAM

    def __init__(self, config: BotNotifierConfig) -> None:
        self._token = config.token
        self._chat_id = config.chat_id
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def targets(self, config: MonitorConfig) -> list[str]:
        return [self._chat_id] if self._chat_id else []

    async def send(self, alert: Alert, config: MonitorConfig, target: str) -> None:
        session = await self._get_session()
        url = _BOT_API.format(token=self._token)
        payload = {
            "chat_id": target,
            "text": self.format_alert(alert, config),
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        try:
            async with session.post(url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise DeliveryFailure(f"Bot API {resp.status}: {truncate(body, 200)}")
        except aiohttp.ClientError as exc:
            raise DeliveryFailure(f"Bot API request failed: {exc}") from exc

    @staticmethod
    def format_alert(alert: Alert, config: MonitorConfig) -> str:
        icon = _SEVERITY_ICONS.get(alert.severity, "🚨")
        keywords = ", ".join(config.keywords)
        return (
            f"{icon} *{alert.title}*\n"
            f"\n"
            f"📌 *Type:* {alert.type}\n"
            f"📊 *Severity:* {str(alert.severity).upper()}\n"
            f"🔎 *Keywords:* {keywords}\n"
            f"\n"
            f"{alert.message}\n"
        )
