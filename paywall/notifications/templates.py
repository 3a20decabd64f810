"""Subjects and plain-text bodies for subscription mail."""

from datetime import datetime
from typing import Any, Mapping, Tuple

from paywall.notifications.mailer import MailTemplate

SITE_NAME = "Premium Reader"


def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d %B %Y")
    return str(value) if value else "soon"


def render(template: MailTemplate, variables: Mapping[str, Any]) -> Tuple[str, str]:
    name = variables.get("user_name") or "Subscriber"
    plan = variables.get("plan_title") or "your"
    expires = _format_date(variables.get("expires_at"))

    if template is MailTemplate.SUBSCRIPTION_CONFIRMATION:
        price = variables.get("price")
        price_line = f"Amount paid: {price}\n" if price is not None else ""
        return (
            f"Subscription Confirmation - {SITE_NAME}",
            f"Dear {name},\n\n"
            f"Thank you for subscribing to {SITE_NAME}.\n"
            f"Plan: {plan}\n"
            f"{price_line}"
            f"Access until: {expires}\n",
        )

    if template is MailTemplate.EXPIRY_REMINDER:
        return (
            f"Your {SITE_NAME} subscription expires on {expires}",
            f"Dear {name},\n\n"
            f"Your {plan} plan expires on {expires}. "
            "Renew now to keep reading without interruption.\n",
        )

    if template is MailTemplate.POST_EXPIRY_NOTICE:
        return (
            f"Your {SITE_NAME} subscription has expired",
            f"Dear {name},\n\n"
            f"Your {plan} plan has expired. "
            "Subscribe again any time to regain full access.\n",
        )

    raise ValueError(f"unknown mail template: {template!r}")
