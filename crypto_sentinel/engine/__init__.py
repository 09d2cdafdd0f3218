"""Alert evaluation engine and scheduler."""

from crypto_sentinel.engine.evaluator import AlertEvaluator
from crypto_sentinel.engine.events import AlertBus
from crypto_sentinel.engine.scheduler import Scheduler

__all__ = ["AlertBus", "AlertEvaluator", "Scheduler"]
