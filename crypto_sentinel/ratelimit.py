"""Per-provider request budgets.

The tracker is the single authority on whether an upstream call may be
made. It is the only piece of state shared across monitors, so every
check-and-decrement happens under one lock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from crypto_sentinel.config import RateLimitConfig
from crypto_sentinel.core.types import Clock
from crypto_sentinel.core.utils import isoformat, utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Budget:
    limit: int
    window: timedelta
    remaining: int
    window_reset_at: datetime


class RateLimitTracker:
    """Tracks ``{remaining, limit, window_reset_at}`` per (provider, endpoint)."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._budgets: dict[tuple[str, str], _Budget] = {}

    @classmethod
    def from_config(cls, config: RateLimitConfig, clock: Clock = utcnow) -> RateLimitTracker:
        tracker = cls(clock=clock)
        tracker.configure(
            "twitter",
            "search",
            limit=config.twitter_search_limit,
            window_seconds=config.twitter_search_window_seconds,
        )
        tracker.configure(
            "openrouter",
            "chat",
            limit=config.oracle_limit,
            window_seconds=config.oracle_window_seconds,
        )
        return tracker

    def configure(
        self,
        provider: str,
        endpoint: str,
        *,
        limit: int,
        window_seconds: float,
    ) -> None:
        """Register (or reset) the budget for one endpoint."""
        if limit < 0:
            raise ValueError("limit must be >= 0")
        window = timedelta(seconds=window_seconds)
        with self._lock:
            self._budgets[(provider, endpoint)] = _Budget(
                limit=limit,
                window=window,
                remaining=limit,
                window_reset_at=self._clock() + window,
            )

    def try_reserve(self, provider: str, endpoint: str, cost: int = 1) -> bool:
        """Reserve *cost* requests; False (and no mutation) if over budget.

        Unknown endpoints are untracked and always allowed.
        """
        if cost < 0:
            raise ValueError("cost must be >= 0")
        with self._lock:
            budget = self._budgets.get((provider, endpoint))
            if budget is None:
                return True
            now = self._clock()
            if now >= budget.window_reset_at:
                budget.remaining = budget.limit
                budget.window_reset_at = now + budget.window
            if budget.remaining >= cost:
                budget.remaining -= cost
                return True
        logger.debug(
            "Rate limit reached for %s/%s (cost=%d)", provider, endpoint, cost
        )
        return False

    def remaining(self, provider: str, endpoint: str) -> int | None:
        with self._lock:
            budget = self._budgets.get((provider, endpoint))
            return None if budget is None else budget.remaining

    def status(self) -> dict[str, Any]:
        """Snapshot of every tracked budget, for health reporting."""
        now = self._clock()
        with self._lock:
            return {
                f"{provider}/{endpoint}": {
                    "remaining": b.remaining,
                    "limit": b.limit,
                    "reset_at": isoformat(b.window_reset_at),
                    "reset_in_seconds": max(
                        0.0, (b.window_reset_at - now).total_seconds()
                    ),
                }
                for (provider, endpoint), b in self._budgets.items()
            }
