"""In-process ``on_alert_fired`` event bus."""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Union

from crypto_sentinel.core.models import Alert

logger = logging.getLogger(__name__)

AlertHandler = Callable[[Alert], Union[None, Awaitable[None]]]


class AlertBus:
    """Fan fired alerts out to subscribers.

    Handlers may be plain functions or coroutine functions. A failing
    subscriber is logged and never affects the others or the publisher.
    """

    def __init__(self) -> None:
        self._handlers: list[AlertHandler] = []

    def subscribe(self, handler: AlertHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def publish(self, alert: Alert) -> int:
        """Deliver *alert* to every subscriber. Returns count that succeeded."""
        ok = 0
        for handler in list(self._handlers):
            try:
                result = handler(alert)
                if inspect.isawaitable(result):
                    await result
                ok += 1
            except Exception:
                logger.exception(
                    "on_alert_fired subscriber %r failed for %s",
                    getattr(handler, "__name__", handler),
                    alert.id,
                )
        return ok
