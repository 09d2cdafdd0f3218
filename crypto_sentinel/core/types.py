"""Shared type aliases and enumerations."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Callable


class _StrEnum(str, Enum):
    def __str__(self) -> str:
        return self.value


class SentimentLabel(_StrEnum):
    """Per-mention sentiment classes produced by the oracle."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class TrendDirection(_StrEnum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class SentimentDirection(_StrEnum):
    """Which way a sentiment move must go to count as a change."""

    ANY = "any"
    POSITIVE = "positive"
    NEGATIVE = "negative"


class AlertType(_StrEnum):
    MENTION_SPIKE = "mention_spike"
    SENTIMENT_CHANGE = "sentiment_change"
    NEW_MENTION = "new_mention"
    INFLUENCER_MENTION = "influencer_mention"
    VOLUME_SPIKE = "volume_spike"


class Severity(_StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Channel(_StrEnum):
    """Notification transports a monitor can route alerts to."""

    LOG = "log"
    WEBHOOK = "webhook"
    EMAIL = "email"
    TELEGRAM = "telegram"


class MonitorPhase(_StrEnum):
    """Evaluation state of a single monitor.

    ``Cooling`` is not a phase: it is ``IDLE`` with a recent
    ``last_alert_at``.
    """

    IDLE = "idle"
    FETCHING = "fetching"
    SCORING = "scoring"
    DECIDING = "deciding"


class EvaluationOutcome(_StrEnum):
    """How a single evaluation pass ended."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    RATE_LIMITED = "rate_limited"
    SOURCE_UNAVAILABLE = "source_unavailable"
    DISCARDED = "discarded"
    FAILED = "failed"


# Injected wall clock; tests substitute a controllable one.
Clock = Callable[[], datetime]
