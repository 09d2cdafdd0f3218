"""PostgreSQL storage backend using asyncpg."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Sequence

import asyncpg

from crypto_sentinel.config import DatabaseConfig
from crypto_sentinel.core.models import Alert, Mention, Monitor
from crypto_sentinel.core.types import AlertType, Severity
from crypto_sentinel.monitors.validation import monitor_from_dict
from crypto_sentinel.storage.base_repository import BaseRepository

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS mentions (
    id              TEXT            PRIMARY KEY,
    project         TEXT            NOT NULL DEFAULT '',
    text            TEXT            NOT NULL,
    created_at      TIMESTAMPTZ     NOT NULL,
    author_id       TEXT            NOT NULL,
    author_handle   TEXT            NOT NULL,
    follower_count  INTEGER         NOT NULL DEFAULT 0,
    verified        BOOLEAN         NOT NULL DEFAULT FALSE,
    engagement      INTEGER         NOT NULL DEFAULT 0,
    influence       DOUBLE PRECISION NOT NULL DEFAULT 0,
    language        TEXT            NOT NULL DEFAULT 'und',
    payload         JSONB           NOT NULL,
    fetched_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_mentions_project_time
    ON mentions (project, created_at DESC);

CREATE TABLE IF NOT EXISTS monitors (
    id              TEXT            PRIMARY KEY,
    is_active       BOOLEAN         NOT NULL DEFAULT TRUE,
    document        JSONB           NOT NULL,
    updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_monitors_active
    ON monitors (is_active) WHERE is_active;

CREATE TABLE IF NOT EXISTS alerts (
    id              TEXT            PRIMARY KEY,
    monitor_id      TEXT            NOT NULL,
    alert_type      TEXT            NOT NULL,
    severity        TEXT            NOT NULL
        CHECK (severity IN ('low', 'medium', 'high', 'critical')),
    title           TEXT            NOT NULL,
    message         TEXT            NOT NULL,
    trigger_data    JSONB           NOT NULL DEFAULT '{}',
    triggered_at    TIMESTAMPTZ     NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_alerts_monitor_time
    ON alerts (monitor_id, triggered_at DESC);
"""


class PostgresRepository(BaseRepository):
    """asyncpg-backed storage with connection pooling."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        self._pool = await asyncpg.create_pool(
            dsn=self._config.dsn,
            min_size=self._config.pool_min,
            max_size=self._config.pool_max,
        )
        async with self._pool.acquire() as conn:
            await conn.execute(_SCHEMA_SQL)
        logger.info(
            "PostgreSQL pool created (%d-%d) and schema ensured",
            self._config.pool_min,
            self._config.pool_max,
        )

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            logger.info("PostgreSQL pool closed")

    async def is_connected(self) -> bool:
        if not self._pool:
            return False
        try:
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False

    async def upsert_mentions(self, mentions: Sequence[Mention], *, project: str = "") -> int:
        """Insert-or-update by id; ``xmax = 0`` marks freshly inserted rows."""
        assert self._pool is not None
        if not mentions:
            return 0
        sql = """
            INSERT INTO mentions
                (id, project, text, created_at, author_id, author_handle,
                 follower_count, verified, engagement, influence, language, payload)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12::jsonb)
            ON CONFLICT (id) DO UPDATE SET
                text = EXCLUDED.text,
                follower_count = EXCLUDED.follower_count,
                verified = EXCLUDED.verified,
                engagement = EXCLUDED.engagement,
                influence = EXCLUDED.influence,
                language = EXCLUDED.language,
                payload = EXCLUDED.payload,
                fetched_at = NOW()
            RETURNING (xmax = 0) AS inserted
        """
        inserted = 0
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                for m in mentions:
                    row = await conn.fetchrow(
                        sql,
                        m.id,
                        project,
                        m.text,
                        m.created_at,
                        m.author.id,
                        m.author.handle,
                        m.author.follower_count,
                        m.author.verified,
                        m.engagement,
                        m.influence,
                        m.language,
                        json.dumps(m.to_dict()),
                    )
                    if row and row["inserted"]:
                        inserted += 1
        return inserted

    async def save_monitor_state(self, monitor: Monitor) -> None:
        assert self._pool is not None
        sql = """
            INSERT INTO monitors (id, is_active, document, updated_at)
            VALUES ($1, $2, $3::jsonb, NOW())
            ON CONFLICT (id) DO UPDATE SET
                is_active = EXCLUDED.is_active,
                document = EXCLUDED.document,
                updated_at = NOW()
        """
        async with self._pool.acquire() as conn:
            await conn.execute(
                sql, monitor.id, monitor.is_active, json.dumps(monitor.to_dict())
            )

    async def load_active_monitors(self, history_size: int = 100) -> list[Monitor]:
        assert self._pool is not None
        sql = "SELECT document FROM monitors WHERE is_active ORDER BY updated_at"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql)

        monitors: list[Monitor] = []
        for r in rows:
            try:
                monitors.append(monitor_from_dict(json.loads(r["document"]), history_size))
            except Exception:
                logger.exception("Skipping unreadable monitor document")
        return monitors

    async def delete_monitor(self, monitor_id: str) -> None:
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            await conn.execute("DELETE FROM monitors WHERE id = $1", monitor_id)

    async def append_alert(self, alert: Alert) -> None:
        assert self._pool is not None
        sql = """
            INSERT INTO alerts
                (id, monitor_id, alert_type, severity, title, message,
                 trigger_data, triggered_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8)
            ON CONFLICT (id) DO NOTHING
        """
        async with self._pool.acquire() as conn:
            await conn.execute(
                sql,
                alert.id,
                alert.monitor_id,
                str(alert.type),
                str(alert.severity),
                alert.title,
                alert.message,
                json.dumps(alert.trigger_data, default=str),
                alert.timestamp,
            )

    async def list_alerts(
        self,
        monitor_id: str | None = None,
        limit: int = 50,
    ) -> list[Alert]:
        assert self._pool is not None
        if monitor_id:
            sql = """
                SELECT * FROM alerts WHERE monitor_id = $1
                ORDER BY triggered_at DESC LIMIT $2
            """
            params: tuple = (monitor_id, limit)
        else:
            sql = "SELECT * FROM alerts ORDER BY triggered_at DESC LIMIT $1"
            params = (limit,)

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)

        return [
            Alert(
                id=r["id"],
                monitor_id=r["monitor_id"],
                type=AlertType(r["alert_type"]),
                severity=Severity(r["severity"]),
                title=r["title"],
                message=r["message"],
                trigger_data=json.loads(r["trigger_data"]),
                timestamp=r["triggered_at"],
            )
            for r in rows
        ]

    async def cleanup_old_mentions(self, before: datetime) -> int:
        assert self._pool is not None
        sql = "DELETE FROM mentions WHERE created_at < $1"
        async with self._pool.acquire() as conn:
            result = await conn.execute(sql, before)
        count = int(result.split()[-1])
        if count:
            logger.info("Cleaned up %d old mentions", count)
        return count
