"""Pluggable mention sources."""

from crypto_sentinel.sources.adapter import (
    FetchResult,
    MentionSourceAdapter,
    TimeWindow,
    apply_filters,
    build_query,
)
from crypto_sentinel.sources.base_source import BaseMentionSource, SearchPage
from crypto_sentinel.sources.twitter_source import TwitterSource

__all__ = [
    "BaseMentionSource",
    "FetchResult",
    "MentionSourceAdapter",
    "SearchPage",
    "TimeWindow",
    "TwitterSource",
    "apply_filters",
    "build_query",
]
