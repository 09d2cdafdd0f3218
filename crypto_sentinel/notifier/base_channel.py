"""Abstract notification channel."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from crypto_sentinel.core.models import Alert, MonitorConfig
from crypto_sentinel.core.types import Channel
from crypto_sentinel.core.utils import isoformat, utcnow


def webhook_payload(
    alert: Alert,
    config: MonitorConfig,
    sent_at: datetime | None = None,
) -> dict[str, Any]:
    """JSON body POSTed to webhook receivers."""
    return {
        "monitor": {"id": config.id, "keywords": list(config.keywords)},
        "alert": {
            "type": str(alert.type),
            "severity": str(alert.severity),
            "message": alert.message,
            "data": alert.trigger_data,
        },
        "timestamp": isoformat(sent_at or utcnow()),
    }


class BaseChannel(ABC):
    """A delivery transport. ``send`` raises ``DeliveryFailure`` on failure."""

    channel: Channel

    def targets(self, config: MonitorConfig) -> list[str]:
        """Destinations this channel delivers to for *config*."""
        return [str(self.channel)]

    @abstractmethod
    async def send(self, alert: Alert, config: MonitorConfig, target: str) -> None:
        ...

    async def close(self) -> None:
        """Release resources (sessions, connections)."""
