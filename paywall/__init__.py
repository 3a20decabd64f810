"""Subscription entitlement and metered-access engine."""

__version__ = "0.1.0"
