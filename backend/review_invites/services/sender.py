from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid

from backend.review_invites.models import ReviewInvitationPayload, SendResult
from backend.review_invites.services.templates import (
    invitation_html,
    invitation_subject,
    invitation_text,
)
from backend.review_invites.settings import Settings

logger = logging.getLogger("review_invites.sender")


def build_invitation_message(payload: ReviewInvitationPayload, *, sender: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = invitation_subject(payload)
    message["From"] = f"{payload.business_name} <{sender}>"
    message["To"] = payload.customer_email
    message["Message-ID"] = make_msgid(domain=sender.rpartition("@")[2] or None)
    message.set_content(invitation_text(payload))
    message.add_alternative(invitation_html(payload), subtype="html")
    return message


class SmtpNotificationSender:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        starttls: bool = True,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout_seconds = timeout_seconds

    def send(self, payload: ReviewInvitationPayload) -> SendResult:
        message = build_invitation_message(payload, sender=self.sender)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as smtp_conn:
                smtp_conn.ehlo()
                if self.starttls:
                    smtp_conn.starttls()
                    smtp_conn.ehlo()
                if self.username and self.password:
                    smtp_conn.login(self.username, self.password)
                refused = smtp_conn.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            return SendResult(success=False, error=str(exc) or exc.__class__.__name__)

        if refused:
            return SendResult(
                success=False,
                error=f"recipient refused: {', '.join(sorted(refused))}",
                raw={"refused": {key: list(value) for key, value in refused.items()}},
            )
        return SendResult(
            success=True,
            raw={"message_id": message["Message-ID"], "accepted": [payload.customer_email]},
        )


class UnconfiguredNotificationSender:
    def send(self, payload: ReviewInvitationPayload) -> SendResult:
        return SendResult(success=False, error="smtp is not configured")


def create_sender(settings: Settings):
    if not settings.smtp_configured:
        logger.warning("smtp_not_configured invitations will fail until SMTP_HOST is set")
        return UnconfiguredNotificationSender()
    return SmtpNotificationSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.smtp_from,
        username=settings.smtp_user,
        password=settings.smtp_password,
        starttls=settings.smtp_starttls,
        timeout_seconds=settings.send_timeout_seconds,
    )
