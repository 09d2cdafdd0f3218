"""Abstract base class for social mention providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from crypto_sentinel.core.models import Mention


@dataclass(slots=True)
class SearchPage:
    """One page of search results."""

    items: list[Mention] = field(default_factory=list)
    next_cursor: str | None = None


class BaseMentionSource(ABC):
    """Every mention provider must implement ``search``.

    To add a new provider:
        1. Create ``myprovider_source.py`` in this package.
        2. Subclass ``BaseMentionSource``.
        3. Implement ``search()`` and ``provider_name``.
        4. Wire the source in ``app.py``.
    """

    #: Whether the query language can exclude reposts server-side.
    supports_repost_filter: bool = False
    #: Whether the query language can restrict languages server-side.
    supports_language_filter: bool = False
    #: How far behind the current time a query window must end.
    end_time_lag: timedelta = timedelta(0)
    #: Oldest window start the provider accepts, relative to now.
    max_lookback: timedelta | None = None

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier used for rate limiting (e.g. 'twitter')."""
        ...

    @property
    def endpoint(self) -> str:
        return "search"

    @abstractmethod
    async def search(
        self,
        query: str,
        *,
        max_results: int = 100,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        cursor: str | None = None,
    ) -> SearchPage:
        """Run *query* against the provider.

        Raises
        ------
        SourceUnavailable
            On any provider error (HTTP failure, rate limit, bad payload).
        """
        ...

    async def close(self) -> None:
        """Release network resources, if any."""
