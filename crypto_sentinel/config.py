"""Environment-based configuration with validation."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root or cwd
_env_path = Path(__file__).resolve().parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int = 0) -> int:
    return int(os.getenv(key, str(default)))


def _env_float(key: str, default: float = 0.0) -> float:
    return float(os.getenv(key, str(default)))


def _env_bool(key: str, default: bool = False) -> bool:
    return os.getenv(key, str(default)).lower() in ("1", "true", "yes")


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SourceConfig:
    """Twitter/X API v2 recent-search settings."""

    bearer_token: str = field(default_factory=lambda: _env("TWITTER_BEARER_TOKEN"))
    api_url: str = field(
        default_factory=lambda: _env("TWITTER_API_URL", "https://api.twitter.com/2")
    )
    max_results: int = field(
        default_factory=lambda: _env_int("TWITTER_MAX_RESULTS", 100)
    )
    max_pages: int = field(default_factory=lambda: _env_int("TWITTER_MAX_PAGES", 1))
    timeout_seconds: float = field(
        default_factory=lambda: _env_float("TWITTER_TIMEOUT", 15.0)
    )


@dataclass(frozen=True, slots=True)
class OracleConfig:
    """Sentiment classification oracle (OpenRouter chat completions)."""

    api_key: str = field(default_factory=lambda: _env("OPENROUTER_API_KEY"))
    api_url: str = field(
        default_factory=lambda: _env(
            "OPENROUTER_API_URL", "https://openrouter.ai/api/v1/chat/completions"
        )
    )
    model: str = field(
        default_factory=lambda: _env("OPENROUTER_MODEL", "google/gemini-2.0-flash-001")
    )
    max_text_length: int = field(
        default_factory=lambda: _env_int("SENTIMENT_MAX_TEXT_LENGTH", 500)
    )
    batch_size: int = field(
        default_factory=lambda: _env_int("SENTIMENT_BATCH_SIZE", 50)
    )
    batch_delay_seconds: float = field(
        default_factory=lambda: _env_float("SENTIMENT_BATCH_DELAY", 0.1)
    )
    timeout_seconds: float = field(
        default_factory=lambda: _env_float("SENTIMENT_TIMEOUT", 20.0)
    )
    influence_weighting: bool = field(
        default_factory=lambda: _env_bool("SENTIMENT_INFLUENCE_WEIGHTING", True)
    )
    cache_ttl_seconds: int = field(
        default_factory=lambda: _env_int("SENTIMENT_CACHE_TTL", 300)
    )


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """Request budgets per provider endpoint."""

    twitter_search_limit: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_TWITTER_SEARCH", 300)
    )
    twitter_search_window_seconds: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_TWITTER_WINDOW", 900)
    )
    oracle_limit: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_ORACLE", 1000)
    )
    oracle_window_seconds: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_ORACLE_WINDOW", 3600)
    )


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Evaluation and scheduling knobs."""

    cooldown_seconds: int = field(
        default_factory=lambda: _env_int("ALERT_COOLDOWN_SECONDS", 300)
    )
    default_lookback_seconds: int = field(
        default_factory=lambda: _env_int("DEFAULT_LOOKBACK_SECONDS", 3600)
    )
    history_size: int = field(
        default_factory=lambda: _env_int("MONITOR_HISTORY_SIZE", 100)
    )
    tick_interval_seconds: int = field(
        default_factory=lambda: _env_int("SCHEDULER_TICK_INTERVAL", 30)
    )
    monitor_interval_seconds: int = field(
        default_factory=lambda: _env_int("MONITOR_INTERVAL_SECONDS", 300)
    )
    batch_size: int = field(
        default_factory=lambda: _env_int("SCHEDULER_BATCH_SIZE", 5)
    )
    mention_retention_hours: int = field(
        default_factory=lambda: _env_int("MENTION_RETENTION_HOURS", 168)
    )


@dataclass(frozen=True, slots=True)
class DispatchConfig:
    """Notification delivery settings."""

    max_attempts: int = field(
        default_factory=lambda: _env_int("DELIVERY_MAX_ATTEMPTS", 3)
    )
    retry_delay_seconds: float = field(
        default_factory=lambda: _env_float("DELIVERY_RETRY_DELAY", 1.0)
    )
    timeout_seconds: float = field(
        default_factory=lambda: _env_float("DELIVERY_TIMEOUT", 10.0)
    )


@dataclass(frozen=True, slots=True)
class EmailConfig:
    """SMTP settings for the email channel."""

    host: str = field(default_factory=lambda: _env("SMTP_HOST"))
    port: int = field(default_factory=lambda: _env_int("SMTP_PORT", 587))
    username: str = field(default_factory=lambda: _env("SMTP_USERNAME"))
    password: str = field(default_factory=lambda: _env("SMTP_PASSWORD"))
    sender: str = field(
        default_factory=lambda: _env("SMTP_SENDER", "alerts@crypto-sentinel.local")
    )
    use_tls: bool = field(default_factory=lambda: _env_bool("SMTP_TLS", True))

    @property
    def enabled(self) -> bool:
        return bool(self.host)


@dataclass(frozen=True, slots=True)
class BotNotifierConfig:
    """Telegram Bot API notification settings."""

    enabled: bool = field(
        default_factory=lambda: _env_bool("BOT_NOTIFIER_ENABLED", False)
    )
    token: str = field(default_factory=lambda: _env("BOT_TOKEN", ""))
    chat_id: str = field(default_factory=lambda: _env("BOT_ALERT_CHAT_ID", ""))


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """PostgreSQL connection settings."""

    host: str = field(default_factory=lambda: _env("DB_HOST", "localhost"))
    port: int = field(default_factory=lambda: _env_int("DB_PORT", 5432))
    user: str = field(default_factory=lambda: _env("DB_USER", "sentinel"))
    password: str = field(default_factory=lambda: _env("DB_PASSWORD"))
    database: str = field(
        default_factory=lambda: _env("DB_NAME", "crypto_sentinel")
    )
    pool_min: int = field(default_factory=lambda: _env_int("DB_POOL_MIN", 2))
    pool_max: int = field(default_factory=lambda: _env_int("DB_POOL_MAX", 10))

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


@dataclass(frozen=True, slots=True)
class MetricsConfig:
    """Prometheus metrics settings."""

    enabled: bool = field(
        default_factory=lambda: _env_bool("METRICS_ENABLED", False)
    )
    port: int = field(
        default_factory=lambda: _env_int("METRICS_PORT", 9090)
    )


@dataclass(frozen=True, slots=True)
class HealthConfig:
    """Health check endpoint settings."""

    enabled: bool = field(
        default_factory=lambda: _env_bool("HEALTH_ENABLED", True)
    )
    port: int = field(
        default_factory=lambda: _env_int("HEALTH_PORT", 8080)
    )


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Root application configuration aggregating all sub-configs."""

    source: SourceConfig = field(default_factory=SourceConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    bot_notifier: BotNotifierConfig = field(default_factory=BotNotifierConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    log_level: str = field(
        default_factory=lambda: _env("LOG_LEVEL", "INFO")
    )
    log_json: bool = field(
        default_factory=lambda: _env_bool("LOG_JSON", False)
    )

    def validate(self, *, require_database: bool = True) -> None:
        """Validate required fields; exits on failure."""
        errors: list[str] = []
        if not self.source.bearer_token:
            errors.append("TWITTER_BEARER_TOKEN is required")
        if not self.oracle.api_key:
            errors.append("OPENROUTER_API_KEY is required")
        if require_database and not self.database.password:
            errors.append("DB_PASSWORD is required")
        if self.bot_notifier.enabled and not (
            self.bot_notifier.token and self.bot_notifier.chat_id
        ):
            errors.append("BOT_TOKEN and BOT_ALERT_CHAT_ID are required when BOT_NOTIFIER_ENABLED")
        if self.engine.batch_size < 1:
            errors.append("SCHEDULER_BATCH_SIZE must be >= 1")
        if self.dispatch.max_attempts < 1:
            errors.append("DELIVERY_MAX_ATTEMPTS must be >= 1")
        if errors:
            for e in errors:
                print(f"[CONFIG ERROR] {e}", file=sys.stderr)
            raise SystemExit(1)
