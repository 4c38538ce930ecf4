from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from crashwatch.alerts.rules import CrashRule, RoutingRule
from crashwatch.utils.types import MARKETS, Market


class ConfigError(Exception):
    """Raised when the environment does not describe a usable configuration."""


@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    chat_id: str                # personal chat id or group id
    parse_mode: Optional[str] = "HTML"
    timeout_s: float = 8.0
    max_retries: int = 3
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0


@dataclass(slots=True)
class EmailConfig:
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_address: str = ""
    to_address: str = ""        # where alert mail goes; defaults to from_address
    timeout_s: float = 10.0


@dataclass(slots=True)
class YahooConfig:
    base_url: str = "https://query1.finance.yahoo.com/v8/finance/chart"
    timeout_s: float = 5.0
    window_days: int = 7        # ± days fetched around the target date
    user_agent: str = "crashwatch/0.1 (historical-close fallback)"
    index_prefixes: tuple[str, ...] = ("NIFTY", "SENSEX", "^")


@dataclass(slots=True)
class AppConfig:
    database_url: str = "sqlite+aiosqlite:///data/crashwatch.db"
    redis_url: str = "redis://localhost:6379/0"
    markets: tuple[Market, ...] = ("INDIA",)
    check_interval_s: float = 300.0
    batch_size: int = 20
    snapshot_retention_days: int = 400
    history_cache_ttl_s: int = 4 * 24 * 60 * 60
    tracking_ttl_s: int = 7 * 24 * 60 * 60
    log_level: str = "INFO"
    rule: CrashRule = field(default_factory=CrashRule)
    routing: RoutingRule = field(default_factory=RoutingRule)
    yahoo: YahooConfig = field(default_factory=YahooConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    telegram: Optional[TelegramConfig] = None


def _floats(raw: str) -> tuple[float, ...]:
    try:
        vals = tuple(sorted(float(x) for x in raw.split(",") if x.strip()))
    except ValueError:
        raise ConfigError(f"bad number list: {raw!r}") from None
    if not vals:
        raise ConfigError("threshold list is empty")
    return vals


def _markets(raw: str) -> tuple[Market, ...]:
    out = tuple(m.strip().upper() for m in raw.split(",") if m.strip())
    bad = [m for m in out if m not in MARKETS]
    if bad or not out:
        raise ConfigError(f"unknown market(s): {bad or raw!r}")
    return out  # type: ignore[return-value]


def telegram_from_env() -> TelegramConfig:
    """Raises ConfigError if TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID are missing."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    chat_id = os.getenv("TELEGRAM_CHAT_ID", "").strip()
    if not token or not chat_id:
        raise ConfigError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are required")
    return TelegramConfig(
        bot_token=token,
        chat_id=chat_id,
        timeout_s=float(os.getenv("TELEGRAM_TIMEOUT_S", "8.0")),
        max_retries=int(os.getenv("TELEGRAM_MAX_RETRIES", "3")),
    )


def config_from_env(dotenv: bool = True) -> AppConfig:
    if dotenv:
        load_dotenv()

    rule = CrashRule(
        thresholds=_floats(os.getenv("DROP_THRESHOLDS", "5,10,15,20")),
        further_drop_percent=float(os.getenv("FURTHER_DROP_PERCENT", "5")),
        recovery_bounce_percent=float(os.getenv("RECOVERY_BOUNCE_PERCENT", "2")),
        critical_threshold=float(os.getenv("CRITICAL_THRESHOLD", "20")),
    )
    routing = RoutingRule(
        push_from=float(os.getenv("PUSH_FROM_THRESHOLD", "10")),
        loud_from=float(os.getenv("LOUD_FROM_THRESHOLD", "15")),
        critical_from=rule.critical_threshold,
    )

    email_from = os.getenv("EMAIL_FROM", "")
    email = EmailConfig(
        smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_user=os.getenv("SMTP_USER", ""),
        smtp_password=os.getenv("SMTP_PASS", ""),
        from_address=email_from,
        to_address=os.getenv("EMAIL_TO", email_from),
    )

    try:
        telegram: Optional[TelegramConfig] = telegram_from_env()
    except ConfigError:
        telegram = None

    return AppConfig(
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///data/crashwatch.db"),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        markets=_markets(os.getenv("MARKETS", "INDIA")),
        check_interval_s=float(os.getenv("CHECK_INTERVAL_S", "300")),
        batch_size=int(os.getenv("BATCH_SIZE", "20")),
        snapshot_retention_days=int(os.getenv("SNAPSHOT_RETENTION_DAYS", "400")),
        history_cache_ttl_s=int(os.getenv("HISTORY_CACHE_TTL_S", str(4 * 24 * 60 * 60))),
        tracking_ttl_s=int(os.getenv("TRACKING_TTL_S", str(7 * 24 * 60 * 60))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        rule=rule,
        routing=routing,
        yahoo=YahooConfig(timeout_s=float(os.getenv("YAHOO_TIMEOUT_S", "5.0"))),
        email=email,
        telegram=telegram,
    )
