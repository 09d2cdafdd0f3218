"""Core models, types, and utilities."""

from crypto_sentinel.core.errors import (
    ClassificationFailure,
    DeliveryFailure,
    MonitorNotFound,
    SentinelError,
    SourceUnavailable,
    StateCorruption,
    ValidationError,
)
from crypto_sentinel.core.models import (
    Alert,
    Author,
    DeliveryResult,
    EngagementMetrics,
    Mention,
    Monitor,
    MonitorConfig,
    MonitorState,
    ProjectSentimentSnapshot,
    SentimentResult,
)
from crypto_sentinel.core.types import AlertType, Channel, SentimentLabel, Severity

__all__ = [
    "Alert",
    "AlertType",
    "Author",
    "Channel",
    "ClassificationFailure",
    "DeliveryFailure",
    "DeliveryResult",
    "EngagementMetrics",
    "Mention",
    "Monitor",
    "MonitorConfig",
    "MonitorNotFound",
    "MonitorState",
    "ProjectSentimentSnapshot",
    "SentimentLabel",
    "SentimentResult",
    "SentinelError",
    "Severity",
    "SourceUnavailable",
    "StateCorruption",
    "ValidationError",
]
