"""Configuration module for the entitlement engine."""

from paywall.config.settings import (
    DEFAULT_REMINDER_LEAD_DAYS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_TEASER_WORD_COUNT,
    PaywallSettings,
    clamp_teaser_words,
    get_settings,
)

__all__ = [
    "DEFAULT_REMINDER_LEAD_DAYS",
    "DEFAULT_SWEEP_INTERVAL_SECONDS",
    "DEFAULT_TEASER_WORD_COUNT",
    "PaywallSettings",
    "clamp_teaser_words",
    "get_settings",
]
