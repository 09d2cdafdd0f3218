"""Tests for the individual alert conditions and their severities."""

from __future__ import annotations

from typing import Any

import pytest

from crypto_sentinel.core.models import (
    Distribution,
    InfluencerMention,
    ProjectSentimentSnapshot,
    VolumePoint,
)
from crypto_sentinel.core.types import AlertType, SentimentDirection, SentimentLabel, Severity
from crypto_sentinel.engine.conditions import (
    ConditionContext,
    check_influencer_mention,
    check_mention_spike,
    check_new_mention,
    check_sentiment_change,
    check_volume_spike,
    directional_delta,
    evaluate_conditions,
    volume_increase_pct,
)
from crypto_sentinel.monitors.validation import build_config

from tests.conftest import T0

_DISABLED: dict[str, Any] = {
    "mention_spike": None,
    "sentiment_change": None,
    "volume_increase": None,
    "new_mention": None,
    "influencer_mention": False,
}


def _ctx(
    *,
    count: int = 0,
    score: float = 0.5,
    baseline: float | None = None,
    history: list[int] | None = None,
    influencers: tuple[InfluencerMention, ...] = (),
    **thresholds: Any,
) -> ConditionContext:
    merged = {**_DISABLED, **thresholds}
    config = build_config(
        {"id": "m1", "project_name": "Solana", "keywords": ["SOL"], "thresholds": merged},
        monitor_id="m1",
    )
    snapshot = ProjectSentimentSnapshot(
        average_score=score,
        confidence=0.8,
        distribution=Distribution(),
        total_mentions=count,
        influencer_mentions=influencers,
    )
    return ConditionContext(
        config=config,
        snapshot=snapshot,
        mention_count=count,
        volume_history=[VolumePoint(T0, v) for v in (history or [])],
        baseline=baseline,
        now=T0,
    )


class TestMentionSpike:
    @pytest.mark.parametrize(
        ("count", "expected"),
        [(50, None), (51, Severity.MEDIUM), (100, Severity.MEDIUM), (101, Severity.HIGH)],
    )
    def test_severity_bands(self, count: int, expected: Severity | None) -> None:
        alert = check_mention_spike(_ctx(count=count, mention_spike=50))

        if expected is None:
            assert alert is None
        else:
            assert alert is not None
            assert alert.severity is expected
            assert alert.trigger_data == {"volume": count, "threshold": 50}
            assert alert.title == "Monitor Alert: Solana"
            assert alert.timestamp == T0


class TestVolumeSpike:
    def test_increase_pct(self) -> None:
        history = [VolumePoint(T0, v) for v in (10, 20, 30)]
        assert volume_increase_pct(40, history) == pytest.approx(100.0)
        assert volume_increase_pct(40, []) is None
        assert volume_increase_pct(40, [VolumePoint(T0, 0)]) is None

    def test_medium_and_high(self) -> None:
        medium = check_volume_spike(_ctx(count=25, history=[10, 10], volume_increase=100))
        high = check_volume_spike(_ctx(count=30, history=[10, 10], volume_increase=100))

        assert medium is not None and medium.severity is Severity.MEDIUM
        assert high is not None and high.severity is Severity.HIGH
        assert high.trigger_data["increase_pct"] == 200.0
        assert high.trigger_data["average"] == 10.0

    def test_below_threshold(self) -> None:
        assert check_volume_spike(_ctx(count=15, history=[10], volume_increase=100)) is None

    def test_needs_history(self) -> None:
        assert check_volume_spike(_ctx(count=500, history=[], volume_increase=100)) is None
        assert check_volume_spike(_ctx(count=500, history=[0, 0], volume_increase=100)) is None


class TestSentimentChange:
    @pytest.mark.parametrize(
        ("direction", "delta", "expected"),
        [
            (SentimentDirection.ANY, -0.4, 0.4),
            (SentimentDirection.POSITIVE, -0.4, -0.4),
            (SentimentDirection.NEGATIVE, -0.4, 0.4),
        ],
    )
    def test_directional_delta(
        self, direction: SentimentDirection, delta: float, expected: float
    ) -> None:
        assert directional_delta(delta, direction) == pytest.approx(expected)

    def test_requires_baseline(self) -> None:
        assert check_sentiment_change(_ctx(count=5, score=0.9, sentiment_change=0.1)) is None

    def test_requires_non_empty_sample(self) -> None:
        ctx = _ctx(count=0, score=0.9, baseline=0.2, sentiment_change=0.1)
        assert check_sentiment_change(ctx) is None

    def test_direction_filters_moves(self) -> None:
        drop = dict(count=5, score=0.3, baseline=0.7, sentiment_change=0.3)

        assert check_sentiment_change(_ctx(sentiment_direction="positive", **drop)) is None
        alert = check_sentiment_change(_ctx(sentiment_direction="negative", **drop))

        assert alert is not None
        assert alert.trigger_data["change"] == pytest.approx(-0.4)
        assert "down" in alert.message

    def test_large_move_is_high(self) -> None:
        alert = check_sentiment_change(
            _ctx(count=5, score=0.9, baseline=0.2, sentiment_change=0.3)
        )
        assert alert is not None
        assert alert.severity is Severity.HIGH


class TestOtherConditions:
    def test_new_mention_is_low(self) -> None:
        alert = check_new_mention(_ctx(count=3, new_mention=3))
        assert alert is not None
        assert alert.severity is Severity.LOW
        assert check_new_mention(_ctx(count=2, new_mention=3)) is None

    def test_influencer_mention(self) -> None:
        influencer = InfluencerMention(
            mention_id="m1",
            handle="whale",
            follower_count=250_000,
            engagement=900,
            influence=0.8,
            label=SentimentLabel.POSITIVE,
            score=0.9,
            text="$SOL breaking out",
        )

        alert = check_influencer_mention(
            _ctx(count=1, influencers=(influencer,), influencer_mention=True)
        )

        assert alert is not None
        assert alert.severity is Severity.HIGH
        assert alert.trigger_data["influencers"][0]["username"] == "whale"
        assert check_influencer_mention(_ctx(count=1, influencer_mention=True)) is None

    def test_several_types_in_one_pass(self) -> None:
        alerts = evaluate_conditions(
            _ctx(count=60, history=[20], mention_spike=50, volume_increase=100, new_mention=1)
        )

        assert [a.type for a in alerts] == [
            AlertType.MENTION_SPIKE,
            AlertType.VOLUME_SPIKE,
            AlertType.NEW_MENTION,
        ]
