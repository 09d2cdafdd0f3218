"""Mention source adapter.

Builds provider queries from keyword sets, fetches pages under a per-call
timeout and applies monitor filters. Provider failures never escape this
module: they come back as an empty ``FetchResult`` carrying the error, which
callers must read as "no new data this tick" rather than "zero mentions".
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from crypto_sentinel.core.errors import SourceUnavailable
from crypto_sentinel.core.models import Mention, MonitorFilters
from crypto_sentinel.sources.base_source import BaseMentionSource

logger = logging.getLogger(__name__)

# Well-known projects map to their ticker / name / tag variants
_KNOWN_PROJECTS: dict[str, tuple[str, ...]] = {
    "bitcoin": ("$BTC", "Bitcoin", "#Bitcoin"),
    "ethereum": ("$ETH", "Ethereum", "#Ethereum"),
    "solana": ("$SOL", "Solana", "#Solana"),
    "cardano": ("$ADA", "Cardano", "#Cardano"),
    "polygon": ("$MATIC", "Polygon", "#Polygon"),
    "chainlink": ("$LINK", "Chainlink", "#Chainlink"),
    "avalanche": ("$AVAX", "Avalanche", "#Avalanche"),
    "polkadot": ("$DOT", "Polkadot", "#Polkadot"),
}

_MAX_CASHTAG_LENGTH = 10


@dataclass(frozen=True, slots=True)
class TimeWindow:
    start: datetime
    end: datetime


@dataclass(slots=True)
class FetchResult:
    """Mentions fetched for one window.

    ``raw`` is everything the provider returned (deduplicated by id),
    ``mentions`` is what survived the monitor filters.
    """

    raw: list[Mention] = field(default_factory=list)
    mentions: list[Mention] = field(default_factory=list)
    error: SourceUnavailable | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def keyword_variants(keyword: str) -> list[str]:
    """Expand one keyword into its plain, cashtag and hashtag forms."""
    term = keyword.strip()
    if not term:
        return []

    known = _KNOWN_PROJECTS.get(term.lower())
    if known:
        return list(known)

    base = term.lstrip("$#")
    variants: list[str] = []
    if term != base:
        variants.append(term)

    if any(ch.isspace() for ch in base):
        variants.append(f'"{base}"')
        return variants

    variants.append(base)
    if base.isalnum() and len(base) <= _MAX_CASHTAG_LENGTH:
        variants.append(f"${base.upper()}")
    variants.append(f"#{base}")
    return variants


def build_query(
    keywords: Iterable[str],
    *,
    exclude_reposts: bool = False,
    languages: Sequence[str] = (),
    supports_repost_filter: bool = True,
    supports_language_filter: bool = True,
) -> str:
    """OR all keyword variants together, adding provider-side filters."""
    seen: set[str] = set()
    terms: list[str] = []
    for keyword in keywords:
        for variant in keyword_variants(keyword):
            key = variant.lower()
            if key not in seen:
                seen.add(key)
                terms.append(variant)

    if not terms:
        raise ValueError("at least one non-empty keyword is required")

    query = f"({' OR '.join(terms)})"
    if exclude_reposts and supports_repost_filter:
        query += " -is:retweet"
    if languages and supports_language_filter:
        if len(languages) == 1:
            query += f" lang:{languages[0]}"
        else:
            query += " (" + " OR ".join(f"lang:{lang}" for lang in languages) + ")"
    return query


def apply_filters(mentions: Iterable[Mention], filters: MonitorFilters) -> list[Mention]:
    """Keep mentions meeting follower, engagement, repost and language rules."""
    kept: list[Mention] = []
    for mention in mentions:
        if mention.author.follower_count < filters.min_followers:
            continue
        if mention.engagement < filters.min_engagement:
            continue
        if filters.exclude_reposts and mention.is_repost:
            continue
        if filters.languages and mention.language not in filters.languages:
            continue
        kept.append(mention)
    return kept


class MentionSourceAdapter:
    """Wraps a ``BaseMentionSource`` behind a failure-free fetch contract."""

    def __init__(
        self,
        source: BaseMentionSource,
        *,
        max_results: int = 100,
        max_pages: int = 1,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._source = source
        self._max_results = max_results
        self._max_pages = max(1, max_pages)
        self._timeout = timeout_seconds

    @property
    def provider(self) -> str:
        return self._source.provider_name

    @property
    def endpoint(self) -> str:
        return self._source.endpoint

    @property
    def request_cost(self) -> int:
        """Upper bound of provider requests one fetch may make."""
        return self._max_pages

    def query_window(self, since: datetime, now: datetime) -> TimeWindow:
        """Window from *since* up to the newest point the provider can serve."""
        end = now - self._source.end_time_lag
        start = since
        lookback = self._source.max_lookback
        if lookback is not None and start < now - lookback:
            logger.warning(
                "%s cannot search before %s; mentions since %s are skipped",
                self.provider,
                now - lookback,
                since,
            )
            start = now - lookback
        return TimeWindow(start=start, end=end)

    async def fetch_mentions(
        self,
        keywords: Sequence[str],
        window: TimeWindow,
        filters: MonitorFilters | None = None,
    ) -> FetchResult:
        filters = filters or MonitorFilters(
            min_followers=0, min_engagement=0, languages=()
        )
        try:
            query = build_query(
                keywords,
                exclude_reposts=filters.exclude_reposts,
                languages=filters.languages,
                supports_repost_filter=self._source.supports_repost_filter,
                supports_language_filter=self._source.supports_language_filter,
            )
        except ValueError as exc:
            return FetchResult(error=SourceUnavailable(str(exc)))
        if window.start >= window.end:
            return FetchResult()

        raw: dict[str, Mention] = {}
        cursor: str | None = None
        try:
            for _ in range(self._max_pages):
                page = await asyncio.wait_for(
                    self._source.search(
                        query,
                        max_results=self._max_results,
                        start_time=window.start,
                        end_time=window.end,
                        cursor=cursor,
                    ),
                    timeout=self._timeout,
                )
                for mention in page.items:
                    raw[mention.id] = mention
                cursor = page.next_cursor
                if not cursor:
                    break
        except SourceUnavailable as exc:
            logger.warning("%s unavailable: %s", self.provider, exc)
            return FetchResult(error=exc)
        except asyncio.TimeoutError:
            logger.warning(
                "%s search timed out after %.1fs", self.provider, self._timeout
            )
            return FetchResult(
                error=SourceUnavailable(f"{self.provider} search timed out")
            )
        except Exception as exc:
            logger.exception("Unexpected %s search failure", self.provider)
            return FetchResult(error=SourceUnavailable(str(exc)))

        mentions = list(raw.values())
        filtered = apply_filters(mentions, filters)
        logger.debug(
            "Fetched %d mention(s), %d after filters, query=%s",
            len(mentions),
            len(filtered),
            query,
        )
        return FetchResult(raw=mentions, mentions=filtered)
