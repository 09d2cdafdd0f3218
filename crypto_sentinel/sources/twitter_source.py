"""Twitter/X API v2 recent-search provider."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import aiohttp

from crypto_sentinel.config import SourceConfig
from crypto_sentinel.core.errors import SourceUnavailable
from crypto_sentinel.core.models import Author, EngagementMetrics, Mention
from crypto_sentinel.core.types import Clock
from crypto_sentinel.core.utils import isoformat, parse_timestamp, utcnow
from crypto_sentinel.sources.base_source import BaseMentionSource, SearchPage

logger = logging.getLogger(__name__)

_TWEET_FIELDS = "created_at,author_id,public_metrics,lang,referenced_tweets"
_USER_FIELDS = "username,name,verified,public_metrics"

# Recent search rejects end_time within 10s of the request and start_time
# older than 7 days
_MIN_END_TIME_LAG = timedelta(seconds=10)
_MAX_START_AGE = timedelta(days=7) - timedelta(minutes=1)


def parse_search_response(data: dict[str, Any]) -> SearchPage:
    """Convert a ``/tweets/search/recent`` payload into canonical mentions."""
    tweets = data.get("data") or []
    users = (data.get("includes") or {}).get("users") or []
    user_map = {u.get("id"): u for u in users}

    items: list[Mention] = []
    for tweet in tweets:
        user = user_map.get(tweet.get("author_id"), {})
        user_metrics = user.get("public_metrics") or {}
        metrics = tweet.get("public_metrics") or {}
        referenced = tweet.get("referenced_tweets") or []
        text = tweet.get("text", "")

        items.append(
            Mention(
                id=str(tweet["id"]),
                text=text,
                created_at=parse_timestamp(tweet.get("created_at")) or utcnow(),
                author=Author(
                    id=str(tweet.get("author_id", "")),
                    handle=user.get("username", "unknown"),
                    name=user.get("name", ""),
                    follower_count=int(user_metrics.get("followers_count", 0) or 0),
                    verified=bool(user.get("verified", False)),
                ),
                metrics=EngagementMetrics(
                    replies=int(metrics.get("reply_count", 0) or 0),
                    reposts=int(metrics.get("retweet_count", 0) or 0),
                    likes=int(metrics.get("like_count", 0) or 0),
                    quotes=int(metrics.get("quote_count", 0) or 0),
                ),
                language=tweet.get("lang") or "und",
                is_repost=(
                    text.startswith("RT @")
                    or any(r.get("type") == "retweeted" for r in referenced)
                ),
            )
        )

    next_cursor = (data.get("meta") or {}).get("next_token")
    return SearchPage(items=items, next_cursor=next_cursor)


class TwitterSource(BaseMentionSource):
    """Bearer-token client for the recent search endpoint."""

    supports_repost_filter = True
    supports_language_filter = True
    end_time_lag = timedelta(seconds=15)
    max_lookback = _MAX_START_AGE

    def __init__(self, config: SourceConfig, *, clock: Clock = utcnow) -> None:
        self._config = config
        self._clock = clock
        self._session: aiohttp.ClientSession | None = None

    @property
    def provider_name(self) -> str:
        return "twitter"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self._config.bearer_token}"},
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def search(
        self,
        query: str,
        *,
        max_results: int = 100,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        cursor: str | None = None,
    ) -> SearchPage:
        now = self._clock()
        if end_time is not None and end_time > now - _MIN_END_TIME_LAG:
            end_time = now - _MIN_END_TIME_LAG
        if start_time is not None and start_time < now - _MAX_START_AGE:
            logger.warning(
                "Twitter search start %s is beyond the 7 day limit; clamping",
                isoformat(start_time),
            )
            start_time = now - _MAX_START_AGE
        if start_time is not None and end_time is not None and start_time >= end_time:
            logger.debug("Empty Twitter search window; skipping request")
            return SearchPage()

        # The API accepts 10..100 results per page
        params: dict[str, str] = {
            "query": query,
            "max_results": str(max(10, min(max_results, 100))),
            "tweet.fields": _TWEET_FIELDS,
            "user.fields": _USER_FIELDS,
            "expansions": "author_id",
        }
        if start_time is not None:
            params["start_time"] = isoformat(start_time.replace(microsecond=0))
        if end_time is not None:
            params["end_time"] = isoformat(end_time.replace(microsecond=0))
        if cursor:
            params["next_token"] = cursor

        url = f"{self._config.api_url}/tweets/search/recent"
        try:
            session = await self._get_session()
            async with session.get(url, params=params) as resp:
                if resp.status == 429:
                    reset = resp.headers.get("x-rate-limit-reset", "unknown")
                    raise SourceUnavailable(f"Twitter rate limited (reset={reset})")
                if resp.status != 200:
                    body = await resp.text()
                    raise SourceUnavailable(
                        f"Twitter API error {resp.status}: {body[:200]}"
                    )
                data = await resp.json()
        except aiohttp.ClientError as exc:
            raise SourceUnavailable(f"Twitter request failed: {exc}") from exc

        try:
            page = parse_search_response(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise SourceUnavailable(f"Malformed Twitter payload: {exc}") from exc

        logger.debug("Twitter search returned %d item(s)", len(page.items))
        return page
