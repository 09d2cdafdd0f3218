"""Process-local storage backend, used for ``--memory`` runs and tests."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Sequence

from crypto_sentinel.core.models import Alert, Mention, Monitor
from crypto_sentinel.monitors.validation import monitor_from_dict
from crypto_sentinel.storage.base_repository import BaseRepository

logger = logging.getLogger(__name__)


class InMemoryRepository(BaseRepository):
    """Dict-backed repository with the same semantics as the SQL backend.

    Monitors are stored as serialized documents so a load never hands out
    an object the engine is currently mutating.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._connected = False
        self.mentions: dict[str, tuple[str, Mention]] = {}
        self.monitors: dict[str, dict[str, Any]] = {}
        self.alerts: list[Alert] = []

    async def connect(self) -> None:
        self._connected = True
        logger.info("In-memory storage ready")

    async def close(self) -> None:
        self._connected = False

    async def is_connected(self) -> bool:
        return self._connected

    async def upsert_mentions(self, mentions: Sequence[Mention], *, project: str = "") -> int:
        inserted = 0
        async with self._lock:
            for mention in mentions:
                if mention.id not in self.mentions:
                    inserted += 1
                self.mentions[mention.id] = (project, mention)
        return inserted

    async def save_monitor_state(self, monitor: Monitor) -> None:
        document = monitor.to_dict()
        async with self._lock:
            self.monitors[monitor.id] = document

    async def load_active_monitors(self, history_size: int = 100) -> list[Monitor]:
        async with self._lock:
            documents = [d for d in self.monitors.values() if d.get("is_active")]
        return [monitor_from_dict(d, history_size) for d in documents]

    async def delete_monitor(self, monitor_id: str) -> None:
        async with self._lock:
            self.monitors.pop(monitor_id, None)

    async def append_alert(self, alert: Alert) -> None:
        async with self._lock:
            self.alerts.append(alert)

    async def list_alerts(
        self,
        monitor_id: str | None = None,
        limit: int = 50,
    ) -> list[Alert]:
        selected = [
            a for a in self.alerts if monitor_id is None or a.monitor_id == monitor_id
        ]
        selected.sort(key=lambda a: a.timestamp, reverse=True)
        return selected[:limit]

    async def cleanup_old_mentions(self, before: datetime) -> int:
        async with self._lock:
            expired = [k for k, (_, m) in self.mentions.items() if m.created_at < before]
            for key in expired:
                del self.mentions[key]
        if expired:
            logger.info("Cleaned up %d old mentions", len(expired))
        return len(expired)
