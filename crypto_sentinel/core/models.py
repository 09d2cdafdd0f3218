"""Domain models used across the application."""

from __future__ import annotations

import math
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from crypto_sentinel.core.types import (
    AlertType,
    Channel,
    EvaluationOutcome,
    MonitorPhase,
    SentimentDirection,
    SentimentLabel,
    Severity,
    TrendDirection,
)
from crypto_sentinel.core.utils import clamp, ensure_utc, isoformat, parse_timestamp, utcnow


def compute_influence(follower_count: int, engagement: int) -> float:
    """``log10(followers+1)/10 + log10(engagement+1)/10`` clamped to [0, 1]."""
    raw = (
        math.log10(max(follower_count, 0) + 1) / 10
        + math.log10(max(engagement, 0) + 1) / 10
    )
    return clamp(raw)


# ---------------------------------------------------------------------------
# Mentions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Author:
    id: str
    handle: str
    follower_count: int = 0
    verified: bool = False
    name: str = ""


@dataclass(frozen=True, slots=True)
class EngagementMetrics:
    """Raw public counters of a post."""

    replies: int = 0
    reposts: int = 0
    likes: int = 0
    quotes: int = 0

    @property
    def weighted(self) -> int:
        return self.replies * 2 + self.reposts * 3 + self.likes + self.quotes * 2


@dataclass(frozen=True, slots=True)
class Mention:
    """One social post referencing a tracked project. Immutable once fetched."""

    id: str
    text: str
    created_at: datetime
    author: Author
    metrics: EngagementMetrics = field(default_factory=EngagementMetrics)
    language: str = "en"
    is_repost: bool = False

    def __post_init__(self) -> None:
        # Ensure timezone-aware timestamp
        if self.created_at.tzinfo is None:
            object.__setattr__(self, "created_at", ensure_utc(self.created_at))

    @property
    def engagement(self) -> int:
        return self.metrics.weighted

    @property
    def influence(self) -> float:
        return compute_influence(self.author.follower_count, self.engagement)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "created_at": isoformat(self.created_at),
            "author": {
                "id": self.author.id,
                "handle": self.author.handle,
                "name": self.author.name,
                "follower_count": self.author.follower_count,
                "verified": self.author.verified,
            },
            "metrics": {
                "replies": self.metrics.replies,
                "reposts": self.metrics.reposts,
                "likes": self.metrics.likes,
                "quotes": self.metrics.quotes,
            },
            "engagement": self.engagement,
            "influence": round(self.influence, 4),
            "language": self.language,
            "is_repost": self.is_repost,
        }


# ---------------------------------------------------------------------------
# Sentiment
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SentimentResult:
    """Oracle output for one text."""

    label: SentimentLabel
    confidence: float
    score: float
    explanation: str = ""
    key_phrases: tuple[str, ...] = ()

    @classmethod
    def neutral(cls, explanation: str = "Analysis failed - using neutral sentiment") -> SentimentResult:
        return cls(
            label=SentimentLabel.NEUTRAL,
            confidence=0.5,
            score=0.5,
            explanation=explanation,
        )


@dataclass(frozen=True, slots=True)
class Distribution:
    """Share of mentions per label, in percent."""

    positive_pct: float = 0.0
    negative_pct: float = 0.0
    neutral_pct: float = 0.0


@dataclass(frozen=True, slots=True)
class Trend:
    direction: TrendDirection = TrendDirection.STABLE
    strength: float = 0.0


@dataclass(frozen=True, slots=True)
class InfluencerMention:
    mention_id: str
    handle: str
    follower_count: int
    engagement: int
    influence: float
    label: SentimentLabel
    score: float
    text: str
    explanation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "mention_id": self.mention_id,
            "handle": self.handle,
            "follower_count": self.follower_count,
            "engagement": self.engagement,
            "influence": round(self.influence, 4),
            "label": str(self.label),
            "score": self.score,
            "text": self.text,
        }


@dataclass(frozen=True, slots=True)
class ProjectSentimentSnapshot:
    """Aggregate sentiment over one sample of mentions."""

    average_score: float
    confidence: float
    distribution: Distribution
    total_mentions: int
    influencer_mentions: tuple[InfluencerMention, ...] = ()
    trend: Trend = field(default_factory=Trend)
    key_phrases: tuple[str, ...] = ()
    insights: tuple[str, ...] = ()
    computed_at: datetime = field(default_factory=utcnow)

    @classmethod
    def empty(cls) -> ProjectSentimentSnapshot:
        return cls(
            average_score=0.5,
            confidence=0.5,
            distribution=Distribution(),
            total_mentions=0,
            insights=("No mentions found",),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "average_score": round(self.average_score, 4),
            "confidence": round(self.confidence, 4),
            "distribution": {
                "positive_pct": self.distribution.positive_pct,
                "negative_pct": self.distribution.negative_pct,
                "neutral_pct": self.distribution.neutral_pct,
            },
            "total_mentions": self.total_mentions,
            "influencer_mentions": [i.to_dict() for i in self.influencer_mentions],
            "trend": {
                "direction": str(self.trend.direction),
                "strength": round(self.trend.strength, 4),
            },
            "key_phrases": list(self.key_phrases),
            "insights": list(self.insights),
            "computed_at": isoformat(self.computed_at),
        }


# ---------------------------------------------------------------------------
# Monitors
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MonitorFilters:
    min_followers: int = 100
    min_engagement: int = 5
    exclude_reposts: bool = False
    languages: tuple[str, ...] = ("en",)


@dataclass(frozen=True, slots=True)
class MonitorThresholds:
    """Alert conditions; ``None`` disables a numeric condition."""

    mention_spike: int | None = 50
    sentiment_change: float | None = 0.3
    sentiment_direction: SentimentDirection = SentimentDirection.ANY
    volume_increase: float | None = 100.0
    new_mention: int | None = None
    influencer_mention: bool = True

    def any_enabled(self) -> bool:
        return (
            self.mention_spike is not None
            or self.sentiment_change is not None
            or self.volume_increase is not None
            or self.new_mention is not None
            or self.influencer_mention
        )


@dataclass(frozen=True, slots=True)
class WebhookTarget:
    url: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NotificationSettings:
    channels: tuple[Channel, ...] = (Channel.LOG,)
    email: str | None = None


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    """User-editable part of a monitor. Replaced wholesale on update."""

    id: str
    keywords: tuple[str, ...]
    project_name: str = ""
    filters: MonitorFilters = field(default_factory=MonitorFilters)
    thresholds: MonitorThresholds = field(default_factory=MonitorThresholds)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    webhooks: tuple[WebhookTarget, ...] = ()
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.project_name or ", ".join(self.keywords)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_name": self.project_name,
            "keywords": list(self.keywords),
            "filters": {
                "min_followers": self.filters.min_followers,
                "min_engagement": self.filters.min_engagement,
                "exclude_reposts": self.filters.exclude_reposts,
                "languages": list(self.filters.languages),
            },
            "thresholds": {
                "mention_spike": self.thresholds.mention_spike,
                "sentiment_change": self.thresholds.sentiment_change,
                "sentiment_direction": str(self.thresholds.sentiment_direction),
                "volume_increase": self.thresholds.volume_increase,
                "new_mention": self.thresholds.new_mention,
                "influencer_mention": self.thresholds.influencer_mention,
            },
            "notifications": {
                "channels": [str(c) for c in self.notifications.channels],
                "email": self.notifications.email,
            },
            "webhooks": [
                {"url": w.url, "headers": dict(w.headers)} for w in self.webhooks
            ],
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


@dataclass(frozen=True, slots=True)
class VolumePoint:
    timestamp: datetime
    volume: int


@dataclass(frozen=True, slots=True)
class SentimentPoint:
    timestamp: datetime
    score: float
    confidence: float


@dataclass(slots=True)
class MonitorState:
    """Mutable evaluation state. Written only by the alert evaluator."""

    history_size: int = 100
    phase: MonitorPhase = MonitorPhase.IDLE
    last_processed_at: datetime | None = None
    last_checked_at: datetime | None = None
    last_alert_at: datetime | None = None
    sentiment_baseline: float | None = None
    volume_history: deque[VolumePoint] = field(default_factory=deque)
    sentiment_history: deque[SentimentPoint] = field(default_factory=deque)
    total_mentions: int = 0
    alerts_triggered: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        self.volume_history = deque(self.volume_history, maxlen=self.history_size)
        self.sentiment_history = deque(self.sentiment_history, maxlen=self.history_size)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": str(self.phase),
            "last_processed_at": isoformat(self.last_processed_at),
            "last_checked_at": isoformat(self.last_checked_at),
            "last_alert_at": isoformat(self.last_alert_at),
            "sentiment_baseline": self.sentiment_baseline,
            "volume_history": [
                {"timestamp": isoformat(p.timestamp), "volume": p.volume}
                for p in self.volume_history
            ],
            "sentiment_history": [
                {
                    "timestamp": isoformat(p.timestamp),
                    "score": p.score,
                    "confidence": p.confidence,
                }
                for p in self.sentiment_history
            ],
            "total_mentions": self.total_mentions,
            "alerts_triggered": self.alerts_triggered,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], history_size: int = 100) -> MonitorState:
        # Phase is never restored: a persisted monitor always resumes idle.
        return cls(
            history_size=history_size,
            last_processed_at=parse_timestamp(data.get("last_processed_at")),
            last_checked_at=parse_timestamp(data.get("last_checked_at")),
            last_alert_at=parse_timestamp(data.get("last_alert_at")),
            sentiment_baseline=data.get("sentiment_baseline"),
            volume_history=deque(
                VolumePoint(parse_timestamp(p["timestamp"]), int(p["volume"]))
                for p in data.get("volume_history", [])
            ),
            sentiment_history=deque(
                SentimentPoint(
                    parse_timestamp(p["timestamp"]),
                    float(p["score"]),
                    float(p.get("confidence", 0.5)),
                )
                for p in data.get("sentiment_history", [])
            ),
            total_mentions=int(data.get("total_mentions", 0)),
            alerts_triggered=int(data.get("alerts_triggered", 0)),
            last_error=data.get("last_error"),
        )


@dataclass(slots=True)
class Monitor:
    """A tracked project: immutable config plus the state it owns."""

    config: MonitorConfig
    state: MonitorState

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def is_active(self) -> bool:
        return self.config.is_active

    def to_dict(self) -> dict[str, Any]:
        data = self.config.to_dict()
        data["state"] = self.state.to_dict()
        return data


# ---------------------------------------------------------------------------
# Alerts and delivery
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Alert:
    """One fired alert. Immutable."""

    monitor_id: str
    type: AlertType
    severity: Severity
    title: str
    message: str
    trigger_data: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: f"alert_{uuid.uuid4().hex[:16]}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "monitor_id": self.monitor_id,
            "type": str(self.type),
            "severity": str(self.severity),
            "title": self.title,
            "message": self.message,
            "trigger_data": self.trigger_data,
            "timestamp": isoformat(self.timestamp),
        }


@dataclass(frozen=True, slots=True)
class ChannelDelivery:
    channel: Channel
    target: str
    delivered: bool
    attempts: int
    error: str | None = None


@dataclass(slots=True)
class DeliveryResult:
    alert_id: str
    deliveries: list[ChannelDelivery] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return bool(self.deliveries) and all(d.delivered for d in self.deliveries)

    @property
    def failures(self) -> list[ChannelDelivery]:
        return [d for d in self.deliveries if not d.delivered]


@dataclass(slots=True)
class EvaluationResult:
    """Outcome of one evaluation pass over one monitor."""

    monitor_id: str
    outcome: EvaluationOutcome
    started_at: datetime
    fetched: int = 0
    filtered: int = 0
    snapshot: ProjectSentimentSnapshot | None = None
    alerts: list[Alert] = field(default_factory=list)
    suppressed: bool = False
    error: str | None = None


@dataclass(slots=True)
class HealthStatus:
    """Application health snapshot."""

    uptime_seconds: float = 0.0
    monitors_total: int = 0
    monitors_active: int = 0
    evaluations_run: int = 0
    alerts_fired: int = 0
    queue_size: int = 0
    in_flight: int = 0
    db_connected: bool = False
    rate_limits: dict[str, Any] = field(default_factory=dict)
