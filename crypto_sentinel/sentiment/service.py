"""On-demand project sentiment with a short-lived cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from crypto_sentinel.core.models import MonitorFilters, ProjectSentimentSnapshot
from crypto_sentinel.core.types import Clock
from crypto_sentinel.core.utils import utcnow
from crypto_sentinel.sentiment.aggregator import SentimentAggregator
from crypto_sentinel.sources.adapter import MentionSourceAdapter, TimeWindow

logger = logging.getLogger(__name__)

TIMEFRAMES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}


@dataclass(slots=True)
class _CacheEntry:
    snapshot: ProjectSentimentSnapshot
    stored_at: datetime


class ProjectSentimentService:
    """Answers "what is the sentiment on X right now?" outside the scheduler.

    Results are cached per (project, timeframe, sample size) for
    ``cache_ttl_seconds``; a failed fetch is never cached.
    """

    def __init__(
        self,
        adapter: MentionSourceAdapter,
        aggregator: SentimentAggregator,
        *,
        cache_ttl_seconds: int = 300,
        clock: Clock = utcnow,
    ) -> None:
        self._adapter = adapter
        self._aggregator = aggregator
        self._ttl = timedelta(seconds=cache_ttl_seconds)
        self._clock = clock
        self._cache: dict[tuple[str, str, int], _CacheEntry] = {}

    async def analyze(
        self,
        project: str,
        *,
        timeframe: str = "24h",
        sample_size: int = 100,
        min_engagement: int = 10,
    ) -> ProjectSentimentSnapshot | None:
        """Return a snapshot, or ``None`` when the source is unavailable."""
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unknown timeframe {timeframe!r}; use one of {sorted(TIMEFRAMES)}")

        key = (project.lower(), timeframe, sample_size)
        now = self._clock()
        cached = self._cache.get(key)
        if cached and now - cached.stored_at < self._ttl:
            return cached.snapshot

        result = await self._adapter.fetch_mentions(
            [project],
            TimeWindow(start=now - TIMEFRAMES[timeframe], end=now),
            MonitorFilters(min_followers=0, min_engagement=min_engagement, languages=()),
        )
        if not result.ok:
            logger.info("No sentiment for %s: %s", project, result.error)
            return None

        snapshot = await self._aggregator.score_project(result.mentions[:sample_size])
        self._cache[key] = _CacheEntry(snapshot=snapshot, stored_at=now)
        return snapshot

    def purge_expired(self) -> int:
        """Drop stale cache entries. Returns count removed."""
        now = self._clock()
        expired = [k for k, v in self._cache.items() if now - v.stored_at >= self._ttl]
        for k in expired:
            del self._cache[k]
        return len(expired)
