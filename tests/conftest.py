"""Shared fixtures and fakes."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from crypto_sentinel.core.errors import ClassificationFailure, DeliveryFailure, SourceUnavailable
from crypto_sentinel.core.models import (
    Alert,
    Author,
    EngagementMetrics,
    Mention,
    MonitorConfig,
    SentimentResult,
)
from crypto_sentinel.core.types import Channel, SentimentLabel
from crypto_sentinel.monitors.registry import MonitorRegistry
from crypto_sentinel.notifier.base_channel import BaseChannel
from crypto_sentinel.ratelimit import RateLimitTracker
from crypto_sentinel.sentiment.aggregator import SentimentAggregator
from crypto_sentinel.sentiment.oracle import BaseClassifier
from crypto_sentinel.sources.adapter import MentionSourceAdapter
from crypto_sentinel.sources.base_source import BaseMentionSource, SearchPage
from crypto_sentinel.storage.memory_repository import InMemoryRepository

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class MutableClock:
    """Injected clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def make_mention(
    index: int,
    *,
    text: str | None = None,
    followers: int = 1_000,
    likes: int = 10,
    created_at: datetime | None = None,
    language: str = "en",
    is_repost: bool = False,
    mention_id: str | None = None,
) -> Mention:
    return Mention(
        id=mention_id or f"m{index}",
        text=text if text is not None else f"$SOL looking strong #{index}",
        created_at=created_at or T0 - timedelta(minutes=index % 60),
        author=Author(id=f"u{index}", handle=f"user{index}", follower_count=followers),
        metrics=EngagementMetrics(likes=likes),
        language=language,
        is_repost=is_repost,
    )


def make_mentions(count: int, **kwargs: Any) -> list[Mention]:
    return [make_mention(i, **kwargs) for i in range(count)]


class FakeSource(BaseMentionSource):
    """Serves canned mentions; ``pages`` maps cursor -> SearchPage."""

    supports_repost_filter = True
    supports_language_filter = True

    def __init__(self, mentions: list[Mention] | None = None) -> None:
        self.mentions: list[Mention] = mentions or []
        self.pages: dict[str | None, SearchPage] | None = None
        self.error: Exception | None = None
        self.delay: float = 0.0
        self.calls: list[dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    async def search(
        self,
        query: str,
        *,
        max_results: int = 100,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        cursor: str | None = None,
    ) -> SearchPage:
        self.calls.append(
            {"query": query, "start_time": start_time, "end_time": end_time, "cursor": cursor}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.pages is not None:
            return self.pages[cursor]
        return SearchPage(items=list(self.mentions))


class LaggedSource(FakeSource):
    """Provider whose windows must end 15s in the past and start within 7 days."""

    end_time_lag = timedelta(seconds=15)
    max_lookback = timedelta(days=7)


class FakeClassifier(BaseClassifier):
    """Returns a fixed verdict, or per-text verdicts from ``by_text``."""

    def __init__(
        self,
        label: SentimentLabel = SentimentLabel.POSITIVE,
        score: float = 0.8,
        confidence: float = 0.9,
    ) -> None:
        super().__init__(max_text_length=500)
        self.default = SentimentResult(label=label, confidence=confidence, score=score)
        self.by_text: dict[str, SentimentResult] = {}
        self.fail_on: set[str] = set()
        self.on_classify: Callable[[str], None] | None = None
        self.calls = 0

    def set_verdict(self, label: SentimentLabel, score: float, confidence: float = 0.9) -> None:
        self.default = SentimentResult(label=label, confidence=confidence, score=score)

    async def classify(self, text: str) -> SentimentResult:
        self.calls += 1
        if self.on_classify is not None:
            self.on_classify(text)
        if text in self.fail_on:
            raise ClassificationFailure(f"cannot classify {text!r}")
        return self.by_text.get(text, self.default)


class FakeChannel(BaseChannel):
    """Records deliveries; fails the first ``failures`` sends."""

    def __init__(self, channel: Channel = Channel.LOG, failures: int = 0) -> None:
        self.channel = channel
        self.failures = failures
        self.sent: list[tuple[str, str]] = []
        self.attempts = 0
        self.delay = 0.0
        self.closed = False

    async def send(self, alert: Alert, config: MonitorConfig, target: str) -> None:
        self.attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.attempts <= self.failures:
            raise DeliveryFailure(f"{self.channel} down")
        self.sent.append((alert.id, target))

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def registry(clock: MutableClock) -> MonitorRegistry:
    return MonitorRegistry(history_size=100, clock=clock)


@pytest.fixture
def rate_limits(clock: MutableClock) -> RateLimitTracker:
    return RateLimitTracker(clock=clock)


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def adapter(source: FakeSource) -> MentionSourceAdapter:
    return MentionSourceAdapter(source, max_results=100, max_pages=1, timeout_seconds=1.0)


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def aggregator(classifier: FakeClassifier) -> SentimentAggregator:
    return SentimentAggregator(classifier, batch_size=50, batch_delay_seconds=0)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def unavailable() -> SourceUnavailable:
    return SourceUnavailable("provider returned 503")
