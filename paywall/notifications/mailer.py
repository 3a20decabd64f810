"""
Mailer boundary.

Actual email transport belongs to another subsystem. The engine only needs
send(template, recipient, variables) and the two failure kinds:
TransientMailError (retry later) and PermanentMailError (do not retry).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Protocol

logger = logging.getLogger(__name__)


class MailTemplate(str, Enum):
    SUBSCRIPTION_CONFIRMATION = "subscription-confirmation"
    EXPIRY_REMINDER = "expiry-reminder"
    POST_EXPIRY_NOTICE = "post-expiry-notice"


class MailError(Exception):
    def __init__(self, message: str, recipient: str = ""):
        super().__init__(message)
        self.recipient = recipient


class TransientMailError(MailError):
    """Provider unavailable or throttled; the same send may succeed later."""


class PermanentMailError(MailError):
    """Bad address or rejected message; retrying will not help."""


class Mailer(Protocol):
    def send(self, template: MailTemplate, recipient_email: str, variables: Mapping[str, Any]) -> None:
        ...


@dataclass
class SentMail:
    template: MailTemplate
    recipient: str
    subject: str
    body_text: str
    logged_at: datetime


@dataclass
class DevMailer:
    """Logs rendered mail instead of sending it. Keeps a copy for inspection."""

    sent: List[SentMail] = field(default_factory=list)
    log_level: int = logging.INFO

    def send(self, template: MailTemplate, recipient_email: str, variables: Mapping[str, Any]) -> None:
        if not recipient_email:
            raise PermanentMailError("recipient email is required", recipient=recipient_email)

        from paywall.notifications.templates import render

        subject, body_text = render(template, variables)
        self.sent.append(
            SentMail(
                template=template,
                recipient=recipient_email,
                subject=subject,
                body_text=body_text,
                logged_at=datetime.now(timezone.utc),
            )
        )
        logger.log(
            self.log_level,
            "mailer.dev_send",
            extra={"template": template.value, "recipient": recipient_email, "subject": subject},
        )

    def sent_to(self, recipient_email: str) -> List[SentMail]:
        return [mail for mail in self.sent if mail.recipient == recipient_email]


def mail_variables(**values: Any) -> Dict[str, Any]:
    """Drop None values so templates fall back to their defaults."""
    return {key: value for key, value in values.items() if value is not None}
