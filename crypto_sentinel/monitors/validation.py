"""Parse and validate monitor configuration mappings.

``build_config`` collects every problem it finds and raises a single
``ValidationError`` listing them, so callers can fix a form in one pass.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from crypto_sentinel.core.errors import ValidationError
from crypto_sentinel.core.models import (
    Monitor,
    MonitorConfig,
    MonitorFilters,
    MonitorState,
    MonitorThresholds,
    NotificationSettings,
    WebhookTarget,
)
from crypto_sentinel.core.types import Channel, SentimentDirection
from crypto_sentinel.core.utils import parse_timestamp, utcnow

_MISSING = object()


def _number(
    errors: list[str],
    name: str,
    value: Any,
    *,
    integer: bool,
    minimum: float | None = None,
    maximum: float | None = None,
    exclusive_minimum: bool = False,
) -> float | int | None:
    if isinstance(value, bool):
        errors.append(f"{name} must be numeric")
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be numeric")
        return None
    if integer:
        if number != int(number):
            errors.append(f"{name} must be a whole number")
            return None
        number = int(number)
    if minimum is not None:
        if exclusive_minimum and number <= minimum:
            errors.append(f"{name} must be > {minimum}")
            return None
        if not exclusive_minimum and number < minimum:
            errors.append(f"{name} must be >= {minimum}")
            return None
    if maximum is not None and number > maximum:
        errors.append(f"{name} must be <= {maximum}")
        return None
    return number


def _optional_number(errors: list[str], name: str, value: Any, **kwargs: Any) -> Any:
    if value is None:
        return None
    return _number(errors, name, value, **kwargs)


def _boolean(errors: list[str], name: str, value: Any, default: bool) -> bool:
    if value is _MISSING or value is None:
        return default
    if not isinstance(value, bool):
        errors.append(f"{name} must be true or false")
        return default
    return value


def _section(errors: list[str], name: str, value: Any) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        errors.append(f"{name} must be an object")
        return {}
    return value


def _keywords(errors: list[str], data: Mapping[str, Any]) -> tuple[str, ...]:
    raw = data.get("keywords") or []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        errors.append("keywords must be a list of strings")
        raw = []
    keywords = tuple(str(k).strip() for k in raw if str(k).strip())
    if not keywords:
        project = str(data.get("project_name") or "").strip()
        if project:
            keywords = (project,)
    if not keywords:
        errors.append("at least one keyword or project_name is required")
    return keywords


def _filters(errors: list[str], data: Mapping[str, Any]) -> MonitorFilters:
    section = _section(errors, "filters", data.get("filters"))
    defaults = MonitorFilters()

    languages: Any = section.get("languages", defaults.languages)
    if isinstance(languages, str):
        languages = [languages]
    if not isinstance(languages, (list, tuple)) or not all(
        isinstance(lang, str) and lang.strip() for lang in languages
    ):
        errors.append("filters.languages must be a list of language codes")
        languages = defaults.languages

    return MonitorFilters(
        min_followers=_number(
            errors, "filters.min_followers",
            section.get("min_followers", defaults.min_followers),
            integer=True, minimum=0,
        ) or 0,
        min_engagement=_number(
            errors, "filters.min_engagement",
            section.get("min_engagement", defaults.min_engagement),
            integer=True, minimum=0,
        ) or 0,
        exclude_reposts=_boolean(
            errors, "filters.exclude_reposts",
            section.get("exclude_reposts", _MISSING), defaults.exclude_reposts,
        ),
        languages=tuple(lang.strip().lower() for lang in languages),
    )


def _thresholds(errors: list[str], data: Mapping[str, Any]) -> MonitorThresholds:
    section = _section(errors, "thresholds", data.get("thresholds"))
    defaults = MonitorThresholds()

    raw_direction = section.get("sentiment_direction", defaults.sentiment_direction)
    try:
        direction = SentimentDirection(str(raw_direction))
    except ValueError:
        errors.append("thresholds.sentiment_direction must be any, positive or negative")
        direction = defaults.sentiment_direction

    thresholds = MonitorThresholds(
        mention_spike=_optional_number(
            errors, "thresholds.mention_spike",
            section.get("mention_spike", defaults.mention_spike),
            integer=True, minimum=1,
        ),
        sentiment_change=_optional_number(
            errors, "thresholds.sentiment_change",
            section.get("sentiment_change", defaults.sentiment_change),
            integer=False, minimum=0, maximum=1, exclusive_minimum=True,
        ),
        sentiment_direction=direction,
        volume_increase=_optional_number(
            errors, "thresholds.volume_increase",
            section.get("volume_increase", defaults.volume_increase),
            integer=False, minimum=0, exclusive_minimum=True,
        ),
        new_mention=_optional_number(
            errors, "thresholds.new_mention",
            section.get("new_mention", defaults.new_mention),
            integer=True, minimum=1,
        ),
        influencer_mention=_boolean(
            errors, "thresholds.influencer_mention",
            section.get("influencer_mention", _MISSING), defaults.influencer_mention,
        ),
    )
    if not thresholds.any_enabled():
        errors.append("at least one alert threshold must be enabled")
    return thresholds


def _webhooks(errors: list[str], data: Mapping[str, Any]) -> tuple[WebhookTarget, ...]:
    raw = data.get("webhooks") or []
    if not isinstance(raw, (list, tuple)):
        errors.append("webhooks must be a list")
        return ()

    targets: list[WebhookTarget] = []
    for index, item in enumerate(raw):
        if isinstance(item, str):
            url, headers = item, {}
        elif isinstance(item, Mapping):
            url, headers = item.get("url", ""), item.get("headers") or {}
        else:
            errors.append(f"webhooks[{index}] must be a URL or an object with url")
            continue
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            errors.append(f"webhooks[{index}].url must be an http(s) URL")
            continue
        if not isinstance(headers, Mapping):
            errors.append(f"webhooks[{index}].headers must be an object")
            continue
        targets.append(
            WebhookTarget(url=url, headers={str(k): str(v) for k, v in headers.items()})
        )
    return tuple(targets)


def _notifications(
    errors: list[str],
    data: Mapping[str, Any],
    webhooks: tuple[WebhookTarget, ...],
) -> NotificationSettings:
    section = _section(errors, "notifications", data.get("notifications"))
    raw_channels = section.get("channels")
    if raw_channels is None:
        raw_channels = [Channel.WEBHOOK] if webhooks else [Channel.LOG]
    if isinstance(raw_channels, str):
        raw_channels = [raw_channels]

    channels: list[Channel] = []
    if not isinstance(raw_channels, (list, tuple)):
        errors.append("notifications.channels must be a list")
        raw_channels = []
    for raw in raw_channels:
        try:
            channel = Channel(str(raw))
        except ValueError:
            errors.append(f"unknown notification channel {raw!r}")
            continue
        if channel not in channels:
            channels.append(channel)
    if webhooks and Channel.WEBHOOK not in channels:
        channels.append(Channel.WEBHOOK)

    if not channels:
        errors.append("at least one notification channel is required")
    if Channel.WEBHOOK in channels and not webhooks:
        errors.append("webhook channel requires at least one webhook URL")

    email = section.get("email")
    if email is not None and (not isinstance(email, str) or "@" not in email):
        errors.append("notifications.email must be an email address")
        email = None
    if Channel.EMAIL in channels and not email:
        errors.append("email channel requires notifications.email")

    return NotificationSettings(channels=tuple(channels), email=email)


def monitor_from_dict(data: Mapping[str, Any], history_size: int = 100) -> Monitor:
    """Rehydrate a persisted ``Monitor.to_dict()`` document."""
    config = build_config(data, monitor_id=str(data.get("id") or ""))
    state = MonitorState.from_dict(dict(data.get("state") or {}), history_size)
    return Monitor(config=config, state=state)


def build_config(
    data: Mapping[str, Any],
    *,
    monitor_id: str,
    created_at: datetime | None = None,
    updated_at: datetime | None = None,
) -> MonitorConfig:
    """Build a validated ``MonitorConfig`` or raise ``ValidationError``."""
    if not isinstance(data, Mapping):
        raise ValidationError(["monitor configuration must be an object"])

    errors: list[str] = []
    keywords = _keywords(errors, data)
    filters = _filters(errors, data)
    thresholds = _thresholds(errors, data)
    webhooks = _webhooks(errors, data)
    notifications = _notifications(errors, data, webhooks)
    is_active = _boolean(errors, "is_active", data.get("is_active", _MISSING), True)
    if not monitor_id:
        errors.append("monitor id must not be empty")

    if errors:
        raise ValidationError(errors)

    return MonitorConfig(
        id=monitor_id,
        keywords=keywords,
        project_name=str(data.get("project_name") or "").strip(),
        filters=filters,
        thresholds=thresholds,
        notifications=notifications,
        webhooks=webhooks,
        is_active=is_active,
        created_at=created_at or parse_timestamp(data.get("created_at")) or utcnow(),
        updated_at=updated_at or parse_timestamp(data.get("updated_at")),
    )
