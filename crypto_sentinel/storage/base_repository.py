"""Abstract storage interface shared by the PostgreSQL and in-memory backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Sequence

from crypto_sentinel.core.models import Alert, Mention, Monitor


class BaseRepository(ABC):
    """Contract for all storage backends."""

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection / pool and ensure schema exists."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release all connections."""
        ...

    @abstractmethod
    async def is_connected(self) -> bool:
        """Connectivity check used by the health endpoint."""
        ...

    @abstractmethod
    async def upsert_mentions(self, mentions: Sequence[Mention], *, project: str = "") -> int:
        """Insert or refresh mentions keyed by id. Return count newly inserted.

        Idempotent: storing the same id twice leaves one record carrying
        the latest fields.
        """
        ...

    @abstractmethod
    async def save_monitor_state(self, monitor: Monitor) -> None:
        """Persist one monitor's config and state atomically."""
        ...

    @abstractmethod
    async def load_active_monitors(self, history_size: int = 100) -> list[Monitor]:
        """Return every persisted monitor flagged active."""
        ...

    @abstractmethod
    async def delete_monitor(self, monitor_id: str) -> None:
        """Remove a monitor record. Missing ids are ignored."""
        ...

    @abstractmethod
    async def append_alert(self, alert: Alert) -> None:
        """Record a fired alert."""
        ...

    @abstractmethod
    async def list_alerts(
        self,
        monitor_id: str | None = None,
        limit: int = 50,
    ) -> list[Alert]:
        """Most recent alerts first."""
        ...

    @abstractmethod
    async def cleanup_old_mentions(self, before: datetime) -> int:
        """Delete mentions created before *before*. Return count deleted."""
        ...
