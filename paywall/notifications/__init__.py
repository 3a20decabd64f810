"""Outbound subscription mail."""

from paywall.notifications.mailer import (
    DevMailer,
    MailError,
    Mailer,
    MailTemplate,
    PermanentMailError,
    SentMail,
    TransientMailError,
    mail_variables,
)
from paywall.notifications.templates import render

__all__ = [
    "DevMailer",
    "MailError",
    "MailTemplate",
    "Mailer",
    "PermanentMailError",
    "SentMail",
    "TransientMailError",
    "mail_variables",
    "render",
]
