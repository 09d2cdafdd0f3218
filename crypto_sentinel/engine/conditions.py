"""Threshold conditions checked when a monitor reaches Deciding.

Every check is a pure function of the monitor config, the current sample
and the monitor's prior state. Each returns an ``Alert`` or ``None``; the
evaluator runs all of them and applies the cooldown gate to the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Sequence

from crypto_sentinel.core.models import (
    Alert,
    MonitorConfig,
    ProjectSentimentSnapshot,
    VolumePoint,
)
from crypto_sentinel.core.types import AlertType, SentimentDirection, Severity


@dataclass(frozen=True, slots=True)
class ConditionContext:
    """Inputs shared by all condition checks for one tick.

    ``volume_history`` and ``baseline`` are the values *before* this tick
    is committed.
    """

    config: MonitorConfig
    snapshot: ProjectSentimentSnapshot
    mention_count: int
    volume_history: Sequence[VolumePoint]
    baseline: float | None
    now: datetime


def _title(config: MonitorConfig) -> str:
    return f"Monitor Alert: {config.display_name}"


def _alert(
    ctx: ConditionContext,
    alert_type: AlertType,
    severity: Severity,
    message: str,
    data: dict[str, Any],
) -> Alert:
    return Alert(
        monitor_id=ctx.config.id,
        type=alert_type,
        severity=severity,
        title=_title(ctx.config),
        message=message,
        trigger_data=data,
        timestamp=ctx.now,
    )


def check_mention_spike(ctx: ConditionContext) -> Alert | None:
    threshold = ctx.config.thresholds.mention_spike
    if threshold is None or ctx.mention_count <= threshold:
        return None
    severity = Severity.HIGH if ctx.mention_count > 2 * threshold else Severity.MEDIUM
    return _alert(
        ctx,
        AlertType.MENTION_SPIKE,
        severity,
        f"Mention spike detected: {ctx.mention_count} mentions (threshold: {threshold})",
        {"volume": ctx.mention_count, "threshold": threshold},
    )


def volume_increase_pct(current: int, history: Sequence[VolumePoint]) -> float | None:
    """Percent increase of *current* over the history mean; ``None`` if undefined."""
    if not history:
        return None
    mean = sum(p.volume for p in history) / len(history)
    if mean <= 0:
        return None
    return (current - mean) / mean * 100


def check_volume_spike(ctx: ConditionContext) -> Alert | None:
    threshold = ctx.config.thresholds.volume_increase
    if threshold is None:
        return None
    increase = volume_increase_pct(ctx.mention_count, ctx.volume_history)
    if increase is None or increase < threshold:
        return None
    mean = sum(p.volume for p in ctx.volume_history) / len(ctx.volume_history)
    severity = Severity.HIGH if increase >= 2 * threshold else Severity.MEDIUM
    return _alert(
        ctx,
        AlertType.VOLUME_SPIKE,
        severity,
        f"Volume up {increase:.0f}% over recent average "
        f"({ctx.mention_count} vs {mean:.1f})",
        {
            "volume": ctx.mention_count,
            "average": round(mean, 2),
            "increase_pct": round(increase, 2),
            "threshold": threshold,
        },
    )


def directional_delta(delta: float, direction: SentimentDirection) -> float:
    """Project a signed sentiment move onto the configured direction."""
    if direction is SentimentDirection.POSITIVE:
        return delta
    if direction is SentimentDirection.NEGATIVE:
        return -delta
    return abs(delta)


def check_sentiment_change(ctx: ConditionContext) -> Alert | None:
    thresholds = ctx.config.thresholds
    if thresholds.sentiment_change is None or ctx.baseline is None:
        return None
    if ctx.snapshot.total_mentions == 0:
        return None

    delta = ctx.snapshot.average_score - ctx.baseline
    if directional_delta(delta, thresholds.sentiment_direction) < thresholds.sentiment_change:
        return None

    severity = (
        Severity.HIGH if abs(delta) >= 2 * thresholds.sentiment_change else Severity.MEDIUM
    )
    trend = "up" if delta > 0 else "down"
    return _alert(
        ctx,
        AlertType.SENTIMENT_CHANGE,
        severity,
        f"Significant sentiment change detected: {abs(delta):.2f} {trend}",
        {
            "current": round(ctx.snapshot.average_score, 4),
            "previous": round(ctx.baseline, 4),
            "change": round(delta, 4),
            "direction": str(thresholds.sentiment_direction),
            "threshold": thresholds.sentiment_change,
        },
    )


def check_new_mention(ctx: ConditionContext) -> Alert | None:
    threshold = ctx.config.thresholds.new_mention
    if threshold is None or ctx.mention_count < threshold:
        return None
    return _alert(
        ctx,
        AlertType.NEW_MENTION,
        Severity.LOW,
        f"{ctx.mention_count} new mention(s) of {ctx.config.display_name}",
        {"count": ctx.mention_count, "threshold": threshold},
    )


def check_influencer_mention(ctx: ConditionContext) -> Alert | None:
    if not ctx.config.thresholds.influencer_mention:
        return None
    influencers = ctx.snapshot.influencer_mentions
    if not influencers:
        return None
    return _alert(
        ctx,
        AlertType.INFLUENCER_MENTION,
        Severity.HIGH,
        f"{len(influencers)} influencer mention(s) detected",
        {
            "count": len(influencers),
            "influencers": [
                {
                    "username": i.handle,
                    "followers": i.follower_count,
                    "engagement": i.engagement,
                    "label": str(i.label),
                    "text": i.text[:100],
                }
                for i in influencers
            ],
        },
    )


CONDITIONS: tuple[Callable[[ConditionContext], Alert | None], ...] = (
    check_mention_spike,
    check_volume_spike,
    check_sentiment_change,
    check_new_mention,
    check_influencer_mention,
)


def evaluate_conditions(ctx: ConditionContext) -> list[Alert]:
    """Run every condition independently; a tick may fire several types."""
    alerts: list[Alert] = []
    for check in CONDITIONS:
        alert = check(ctx)
        if alert is not None:
            alerts.append(alert)
    return alerts
