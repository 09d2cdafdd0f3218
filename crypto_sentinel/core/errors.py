"""Exception taxonomy.

Only ``ValidationError`` and ``MonitorNotFound`` ever reach callers of the
public API; the rest are converted to degraded results at the component
boundary that raised them.
"""

from __future__ import annotations


class SentinelError(Exception):
    """Base class for all engine errors."""


class ValidationError(SentinelError):
    """Malformed monitor configuration, rejected at create/update."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid monitor configuration: " + "; ".join(self.errors))


class MonitorNotFound(SentinelError, KeyError):
    """No monitor registered under the given id."""

    def __init__(self, monitor_id: str) -> None:
        self.monitor_id = monitor_id
        super().__init__(f"Monitor {monitor_id} not found")

    def __str__(self) -> str:
        return f"Monitor {self.monitor_id} not found"


class SourceUnavailable(SentinelError):
    """Upstream mention source failed, timed out or rate-limited us."""


class ClassificationFailure(SentinelError):
    """The sentiment oracle could not classify one text."""


class DeliveryFailure(SentinelError):
    """A notification channel failed to deliver; retryable."""


class StateCorruption(SentinelError):
    """A monitor's state was found mid-evaluation outside the owning pass."""
