"""In-process registry of monitors.

The registry owns monitor *configuration*; each ``Monitor`` keeps the same
``MonitorState`` instance across config updates, and only the alert
evaluator writes that state.

Writes are copy-on-write: the id -> monitor map is rebuilt and swapped in
one assignment, so readers (the scheduler, the evaluator) always see a
complete map holding complete monitors.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from enum import Enum
from typing import Any, Callable, Mapping

from crypto_sentinel.core.errors import MonitorNotFound, ValidationError
from crypto_sentinel.core.models import Monitor, MonitorConfig, MonitorState
from crypto_sentinel.core.types import Clock
from crypto_sentinel.core.utils import isoformat, utcnow
from crypto_sentinel.monitors.validation import build_config

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"

# Fields that callers may not patch directly
_IMMUTABLE_FIELDS = frozenset({"id", "created_at", "updated_at", "state"})


class RegistryEvent(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


RegistryListener = Callable[[RegistryEvent, Monitor], None]


def generate_monitor_id() -> str:
    return f"monitor_{uuid.uuid4().hex[:12]}"


def _merge(base: dict[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in patch.items():
        if key in _IMMUTABLE_FIELDS:
            continue
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _identity(config: MonitorConfig) -> tuple[str, tuple[str, ...]]:
    """Project and keyword set a monitor tracks, ignoring case and order."""
    return (
        config.project_name.casefold(),
        tuple(sorted({k.casefold() for k in config.keywords})),
    )


class MonitorRegistry:
    """Create, update, toggle, delete and look up monitors."""

    def __init__(self, history_size: int = 100, clock: Clock = utcnow) -> None:
        self._history_size = history_size
        self._clock = clock
        self._lock = threading.Lock()
        self._monitors: dict[str, Monitor] = {}
        self._listeners: list[RegistryListener] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, monitor_id: str) -> Monitor | None:
        return self._monitors.get(monitor_id)

    def require(self, monitor_id: str) -> Monitor:
        monitor = self._monitors.get(monitor_id)
        if monitor is None:
            raise MonitorNotFound(monitor_id)
        return monitor

    def list(self) -> list[Monitor]:
        return list(self._monitors.values())

    def active(self) -> list[Monitor]:
        return [m for m in self._monitors.values() if m.is_active]

    def is_active(self, monitor_id: str) -> bool:
        monitor = self._monitors.get(monitor_id)
        return monitor is not None and monitor.is_active

    def __len__(self) -> int:
        return len(self._monitors)

    def __contains__(self, monitor_id: object) -> bool:
        return monitor_id in self._monitors

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, config: Mapping[str, Any]) -> Monitor:
        """Validate *config* and register a new monitor."""
        monitor_id = str(config.get("id") or generate_monitor_id())
        if monitor_id in self._monitors:
            raise ValidationError([f"monitor id {monitor_id} already exists"])

        built = build_config(config, monitor_id=monitor_id, created_at=self._clock())
        monitor = Monitor(config=built, state=MonitorState(history_size=self._history_size))
        with self._lock:
            if monitor_id in self._monitors:
                raise ValidationError([f"monitor id {monitor_id} already exists"])
            self._monitors = {**self._monitors, monitor_id: monitor}

        logger.info(
            "Monitor %s created for %s (active=%s)",
            monitor_id,
            built.display_name,
            built.is_active,
        )
        self._emit(RegistryEvent.CREATED, monitor)
        return monitor

    def update(self, monitor_id: str, patch: Mapping[str, Any]) -> Monitor:
        """Deep-merge *patch*, re-validate and commit all-or-nothing."""
        current = self.require(monitor_id)
        base = current.config.to_dict()
        merged = _merge(base, patch)
        built = build_config(
            merged,
            monitor_id=monitor_id,
            created_at=current.config.created_at,
            updated_at=self._clock(),
        )
        return self._replace(current, built)

    def toggle(self, monitor_id: str, is_active: bool) -> Monitor:
        current = self.require(monitor_id)
        if current.config.is_active == is_active:
            return current
        built = dataclasses.replace(
            current.config, is_active=is_active, updated_at=self._clock()
        )
        logger.info("Monitor %s %s", monitor_id, "activated" if is_active else "deactivated")
        return self._replace(current, built)

    def delete(self, monitor_id: str) -> None:
        with self._lock:
            monitor = self._monitors.get(monitor_id)
            if monitor is None:
                raise MonitorNotFound(monitor_id)
            remaining = dict(self._monitors)
            del remaining[monitor_id]
            self._monitors = remaining
        logger.info("Monitor %s deleted", monitor_id)
        self._emit(RegistryEvent.DELETED, monitor)

    def restore(self, monitor: Monitor) -> Monitor:
        """Register a monitor loaded from storage, keeping its state."""
        with self._lock:
            self._monitors = {**self._monitors, monitor.id: monitor}
        self._emit(RegistryEvent.CREATED, monitor)
        return monitor

    def _replace(self, current: Monitor, config: MonitorConfig) -> Monitor:
        updated = Monitor(config=config, state=current.state)
        with self._lock:
            if config.id not in self._monitors:
                raise MonitorNotFound(config.id)
            self._monitors = {**self._monitors, config.id: updated}
        self._emit(RegistryEvent.UPDATED, updated)
        return updated

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export(self) -> dict[str, Any]:
        return {
            "version": EXPORT_VERSION,
            "timestamp": isoformat(self._clock()),
            "monitors": [m.config.to_dict() for m in self._monitors.values()],
        }

    def import_monitors(
        self, data: Mapping[str, Any], *, skip_existing: bool = False
    ) -> list[Monitor]:
        """Create every monitor in an export document under fresh ids.

        All entries are validated before any is registered. With
        *skip_existing*, entries tracking the same project and keywords as a
        registered monitor are left out, so re-importing a file is a no-op.
        """
        entries = data.get("monitors") if isinstance(data, Mapping) else None
        if not isinstance(entries, list):
            raise ValidationError(["import data must contain a monitors list"])

        prepared: list[tuple[dict[str, Any], MonitorConfig]] = []
        errors: list[str] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                errors.append(f"monitors[{index}] must be an object")
                continue
            candidate = {k: v for k, v in entry.items() if k not in _IMMUTABLE_FIELDS}
            try:
                built = build_config(candidate, monitor_id="validation")
            except ValidationError as exc:
                errors.extend(f"monitors[{index}]: {e}" for e in exc.errors)
                continue
            prepared.append((candidate, built))
        if errors:
            raise ValidationError(errors)

        seen: set[tuple[str, tuple[str, ...]]] = set()
        if skip_existing:
            seen = {_identity(m.config) for m in self._monitors.values()}
        created: list[Monitor] = []
        for candidate, built in prepared:
            if skip_existing:
                key = _identity(built)
                if key in seen:
                    logger.info(
                        "Monitor for %s already registered; skipping", built.display_name
                    )
                    continue
                seen.add(key)
            created.append(self.create(candidate))
        return created

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: RegistryEvent, monitor: Monitor) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, monitor)
            except Exception:
                logger.exception(
                    "Registry listener failed on %s for %s", event.value, monitor.id
                )
