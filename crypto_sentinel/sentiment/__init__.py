"""Sentiment classification and aggregation."""

from crypto_sentinel.sentiment.aggregator import SentimentAggregator, compute_trend
from crypto_sentinel.sentiment.oracle import BaseClassifier, OpenRouterClassifier
from crypto_sentinel.sentiment.service import ProjectSentimentService

__all__ = [
    "BaseClassifier",
    "OpenRouterClassifier",
    "ProjectSentimentService",
    "SentimentAggregator",
    "compute_trend",
]
