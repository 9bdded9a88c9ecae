"""Outbound mail for verification codes.

Delivery happens after the issuing transaction commits. It is best effort:
failures are logged and never reported back to the caller. Passcodes are
never written to the log.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import Protocol

from campus_gate.core.settings import Settings, SmtpSecurity
from campus_gate.models.email_otp import OtpPurpose

logger = logging.getLogger(__name__)

_SUBJECTS = {
    OtpPurpose.SIGNUP: "[Campus Gate] Sign-up verification code",
    OtpPurpose.PASSWORD_RESET: "[Campus Gate] Password reset verification code",
}


@dataclass(frozen=True)
class CodeIssued:
    """A passcode ready to be delivered to ``email``."""

    email: str
    purpose: OtpPurpose
    code: str = field(repr=False)
    ttl_minutes: int


class MailSender(Protocol):
    def deliver(self, event: CodeIssued) -> None: ...


def render_code_mail(event: CodeIssued, sender: str) -> MIMEText:
    body = (
        f"Your verification code is {event.code}.\n"
        f"The code expires in {event.ttl_minutes} minutes.\n\n"
        "If you did not request this code, you can ignore this email."
    )
    message = MIMEText(body, "plain", "utf-8")
    message["Subject"] = _SUBJECTS[event.purpose]
    message["From"] = sender
    message["To"] = event.email
    return message


class SmtpMailSender:
    """Deliver verification codes over SMTP, or log a notice when SMTP is unset."""

    def __init__(
        self,
        *,
        sender: str,
        host: str | None,
        port: int = 587,
        user: str | None = None,
        password: str | None = None,
        security: SmtpSecurity = "starttls",
        timeout_seconds: float = 10.0,
    ) -> None:
        self.sender = sender
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.security = security
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpMailSender:
        return cls(
            sender=settings.mail_from,
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            security=settings.smtp_security,
            timeout_seconds=settings.smtp_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host)

    def deliver(self, event: CodeIssued) -> None:
        if not self.is_configured:
            logger.info(
                "SMTP not configured; %s code for %s was not delivered",
                event.purpose.value,
                event.email,
            )
            return

        message = render_code_mail(event, self.sender)
        try:
            self._send(event.email, message)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to deliver %s code to %s", event.purpose.value, event.email)
            return
        logger.info("Delivered %s code to %s", event.purpose.value, event.email)

    def _send(self, recipient: str, message: MIMEText) -> None:
        context = ssl.create_default_context()
        if self.security == "ssl":
            server: smtplib.SMTP = smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout_seconds, context=context
            )
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds)
        with server:
            if self.security == "starttls":
                server.starttls(context=context)
            self._login(server)
            server.sendmail(self.sender, [recipient], message.as_string())

    def _login(self, server: smtplib.SMTP) -> None:
        if self.user and self.password:
            server.login(self.user, self.password)
