"""Project-level sentiment aggregation.

Mentions are classified in bounded batches through the oracle. Any item the
oracle cannot classify (error or timeout) degrades to the neutral default
instead of failing the aggregation.

Two views of the same sample are exposed and may diverge on purpose:

* ``distribution`` counts labels (one mention, one vote);
* ``average_score`` weights each score by ``1 + influence``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Sequence

from crypto_sentinel.config import OracleConfig
from crypto_sentinel.core.models import (
    Distribution,
    InfluencerMention,
    Mention,
    ProjectSentimentSnapshot,
    SentimentResult,
    Trend,
)
from crypto_sentinel.core.types import SentimentLabel, TrendDirection
from crypto_sentinel.core.utils import truncate, utcnow
from crypto_sentinel.sentiment.oracle import BaseClassifier

logger = logging.getLogger(__name__)

TREND_THRESHOLD = 0.1
MIN_TREND_SAMPLES = 10
INFLUENCER_MIN_FOLLOWERS = 10_000
INFLUENCER_MIN_ENGAGEMENT = 100
MAX_REPORTED_INFLUENCERS = 5
MAX_KEY_PHRASES = 5


# ---------------------------------------------------------------------------
# Pure aggregation helpers
# ---------------------------------------------------------------------------


def weighted_average(
    mentions: Sequence[Mention],
    results: Sequence[SentimentResult],
    use_influence: bool = True,
) -> float:
    """``sum(score * weight) / sum(weight)`` with ``weight = 1 + influence``."""
    total_score = 0.0
    total_weight = 0.0
    for mention, result in zip(mentions, results):
        weight = 1.0 + mention.influence if use_influence else 1.0
        total_score += result.score * weight
        total_weight += weight
    return total_score / total_weight if total_weight > 0 else 0.5


def label_distribution(results: Sequence[SentimentResult]) -> Distribution:
    total = len(results)
    if total == 0:
        return Distribution()
    counts = {label: 0 for label in SentimentLabel}
    for result in results:
        counts[result.label] += 1
    return Distribution(
        positive_pct=round(counts[SentimentLabel.POSITIVE] * 100 / total, 2),
        negative_pct=round(counts[SentimentLabel.NEGATIVE] * 100 / total, 2),
        neutral_pct=round(counts[SentimentLabel.NEUTRAL] * 100 / total, 2),
    )


def mean_confidence(results: Sequence[SentimentResult]) -> float:
    if not results:
        return 0.5
    return sum(r.confidence for r in results) / len(results)


def compute_trend(
    points: Sequence[tuple[datetime, float]],
    min_samples: int = MIN_TREND_SAMPLES,
) -> Trend:
    """OLS slope of score against time, oldest first.

    Time is rescaled to [0, 1] across the sample so the slope reads as
    "score change over the window". Samples sharing one timestamp fall
    back to their rank.
    """
    n = len(points)
    if n < min_samples or n < 2:
        return Trend(TrendDirection.STABLE, 0.0)

    ordered = sorted(points, key=lambda p: p[0])
    t0 = ordered[0][0]
    span = (ordered[-1][0] - t0).total_seconds()
    if span > 0:
        xs = [(ts - t0).total_seconds() / span for ts, _ in ordered]
    else:
        xs = [i / (n - 1) for i in range(n)]
    ys = [score for _, score in ordered]

    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    sxx = sum((x - mean_x) ** 2 for x in xs)
    if sxx == 0:
        return Trend(TrendDirection.STABLE, 0.0)
    slope = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys)) / sxx

    if slope > TREND_THRESHOLD:
        direction = TrendDirection.IMPROVING
    elif slope < -TREND_THRESHOLD:
        direction = TrendDirection.DECLINING
    else:
        direction = TrendDirection.STABLE
    return Trend(direction, abs(slope))


def is_influencer(mention: Mention) -> bool:
    return (
        mention.author.follower_count > INFLUENCER_MIN_FOLLOWERS
        or mention.engagement > INFLUENCER_MIN_ENGAGEMENT
    )


def select_influencers(
    mentions: Sequence[Mention],
    results: Sequence[SentimentResult],
    limit: int = MAX_REPORTED_INFLUENCERS,
) -> tuple[InfluencerMention, ...]:
    candidates = [
        (mention, result)
        for mention, result in zip(mentions, results)
        if is_influencer(mention)
    ]
    candidates.sort(key=lambda pair: pair[0].influence, reverse=True)
    return tuple(
        InfluencerMention(
            mention_id=mention.id,
            handle=mention.author.handle,
            follower_count=mention.author.follower_count,
            engagement=mention.engagement,
            influence=mention.influence,
            label=result.label,
            score=result.score,
            text=truncate(mention.text, 100),
            explanation=result.explanation,
        )
        for mention, result in candidates[:limit]
    )


def top_key_phrases(results: Sequence[SentimentResult], limit: int = MAX_KEY_PHRASES) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for result in results:
        for phrase in result.key_phrases:
            seen.setdefault(phrase, None)
    return tuple(list(seen)[:limit])


def generate_insights(
    distribution: Distribution,
    influencers: Sequence[InfluencerMention],
    phrases: Sequence[str],
) -> tuple[str, ...]:
    insights: list[str] = []
    positive = round(distribution.positive_pct)
    negative = round(distribution.negative_pct)

    if positive > 60:
        insights.append(f"Strong positive sentiment ({positive}% of mentions)")
    elif negative > 60:
        insights.append(f"Strong negative sentiment ({negative}% of mentions)")
    else:
        insights.append(f"Mixed sentiment: {positive}% positive, {negative}% negative")

    if influencers:
        upbeat = sum(1 for i in influencers if i.label == SentimentLabel.POSITIVE)
        if upbeat > len(influencers) / 2:
            insights.append(f"Influencers are mostly positive ({upbeat}/{len(influencers)})")
        else:
            insights.append(
                f"Mixed influencer sentiment ({upbeat}/{len(influencers)} positive)"
            )

    if phrases:
        insights.append(f"Common themes: {', '.join(phrases[:3])}")
    return tuple(insights)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class SentimentAggregator:
    """Classifies mention samples and reduces them to a snapshot."""

    def __init__(
        self,
        classifier: BaseClassifier,
        *,
        batch_size: int = 50,
        batch_delay_seconds: float = 0.1,
        timeout_seconds: float = 20.0,
        influence_weighting: bool = True,
        min_trend_samples: int = MIN_TREND_SAMPLES,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._classifier = classifier
        self._batch_size = batch_size
        self._batch_delay = batch_delay_seconds
        self._timeout = timeout_seconds
        self._influence_weighting = influence_weighting
        self._min_trend_samples = min_trend_samples

    @classmethod
    def from_config(cls, classifier: BaseClassifier, config: OracleConfig) -> SentimentAggregator:
        return cls(
            classifier,
            batch_size=config.batch_size,
            batch_delay_seconds=config.batch_delay_seconds,
            timeout_seconds=config.timeout_seconds,
            influence_weighting=config.influence_weighting,
        )

    async def _classify_one(self, text: str) -> SentimentResult:
        try:
            return await asyncio.wait_for(
                self._classifier.classify(self._classifier.prepare(text)),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Classification timed out after %.1fs", self._timeout)
        except Exception as exc:
            logger.warning("Classification failed, using neutral: %s", exc)
        return SentimentResult.neutral()

    async def classify_all(self, mentions: Sequence[Mention]) -> list[SentimentResult]:
        """Classify in batches; result order matches *mentions*."""
        results: list[SentimentResult] = []
        for start in range(0, len(mentions), self._batch_size):
            batch = mentions[start : start + self._batch_size]
            results.extend(
                await asyncio.gather(*(self._classify_one(m.text) for m in batch))
            )
            if start + self._batch_size < len(mentions) and self._batch_delay > 0:
                await asyncio.sleep(self._batch_delay)
        return results

    def summarize(
        self,
        mentions: Sequence[Mention],
        results: Sequence[SentimentResult],
    ) -> ProjectSentimentSnapshot:
        if not mentions:
            return ProjectSentimentSnapshot.empty()

        distribution = label_distribution(results)
        influencers = select_influencers(mentions, results)
        phrases = top_key_phrases(results)
        return ProjectSentimentSnapshot(
            average_score=weighted_average(mentions, results, self._influence_weighting),
            confidence=mean_confidence(results),
            distribution=distribution,
            total_mentions=len(mentions),
            influencer_mentions=influencers,
            trend=compute_trend(
                [(m.created_at, r.score) for m, r in zip(mentions, results)],
                self._min_trend_samples,
            ),
            key_phrases=phrases,
            insights=generate_insights(distribution, influencers, phrases),
            computed_at=utcnow(),
        )

    async def score_project(self, mentions: Sequence[Mention]) -> ProjectSentimentSnapshot:
        """Classify *mentions* and aggregate them into one snapshot."""
        if not mentions:
            return ProjectSentimentSnapshot.empty()
        results = await self.classify_all(mentions)
        snapshot = self.summarize(mentions, results)
        logger.debug(
            "Scored %d mention(s): avg=%.3f conf=%.2f trend=%s",
            snapshot.total_mentions,
            snapshot.average_score,
            snapshot.confidence,
            snapshot.trend.direction,
        )
        return snapshot
