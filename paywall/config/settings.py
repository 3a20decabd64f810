"""
Runtime settings for the entitlement engine.

All values come from environment variables. Settings are read once per
process through get_settings(); tests build PaywallSettings directly.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

DEFAULT_DATABASE_URL = "sqlite:///./paywall.db"

# Daily sweep, reminders three days ahead of expiry
DEFAULT_SWEEP_INTERVAL_SECONDS = 24 * 60 * 60
DEFAULT_REMINDER_LEAD_DAYS = 3

DEFAULT_MAX_ACTIVE_SUBSCRIPTIONS = 2

DEFAULT_TEASER_WORD_COUNT = 150
MIN_TEASER_WORDS = 1
MAX_TEASER_WORDS = 200

DEFAULT_STORE_TIMEOUT_SECONDS = 5.0


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass(frozen=True)
class PaywallSettings:
    database_url: str = DEFAULT_DATABASE_URL
    redis_url: Optional[str] = None
    jwt_secret: Optional[str] = None
    payment_webhook_secret: Optional[str] = None
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS
    reminder_lead_days: int = DEFAULT_REMINDER_LEAD_DAYS
    max_active_subscriptions: int = DEFAULT_MAX_ACTIVE_SUBSCRIPTIONS
    teaser_word_count: int = DEFAULT_TEASER_WORD_COUNT
    store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS
    scheduler_enabled: bool = True

    @classmethod
    def from_env(cls) -> "PaywallSettings":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            redis_url=_env_optional("REDIS_URL"),
            jwt_secret=_env_optional("JWT_SECRET"),
            payment_webhook_secret=_env_optional("PAYMENT_WEBHOOK_SECRET"),
            sweep_interval_seconds=int(
                os.getenv("EXPIRY_SWEEP_INTERVAL_SECONDS", str(DEFAULT_SWEEP_INTERVAL_SECONDS))
            ),
            reminder_lead_days=int(
                os.getenv("EXPIRY_REMINDER_LEAD_DAYS", str(DEFAULT_REMINDER_LEAD_DAYS))
            ),
            max_active_subscriptions=int(
                os.getenv("MAX_ACTIVE_SUBSCRIPTIONS", str(DEFAULT_MAX_ACTIVE_SUBSCRIPTIONS))
            ),
            teaser_word_count=clamp_teaser_words(
                int(os.getenv("TEASER_WORD_COUNT", str(DEFAULT_TEASER_WORD_COUNT)))
            ),
            store_timeout_seconds=float(
                os.getenv("STORE_TIMEOUT_SECONDS", str(DEFAULT_STORE_TIMEOUT_SECONDS))
            ),
            scheduler_enabled=_env_bool("EXPIRY_SCHEDULER_ENABLED", "true"),
        )


def clamp_teaser_words(words: Optional[int]) -> int:
    """Clamp a requested teaser length into the supported range."""
    if not words:
        return DEFAULT_TEASER_WORD_COUNT
    return max(MIN_TEASER_WORDS, min(int(words), MAX_TEASER_WORDS))


@lru_cache(maxsize=1)
def get_settings() -> PaywallSettings:
    return PaywallSettings.from_env()
