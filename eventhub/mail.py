"""Outgoing email delivery."""
from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Optional, Protocol

import anyio

logger = logging.getLogger("eventhub.mail")


class MailError(RuntimeError):
    """Raised when a message cannot be handed to the mail server."""


class Mailer(Protocol):
    async def send(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> None: ...


@dataclass(frozen=True)
class SMTPSettings:
    host: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    sender: str = "no-reply@eventhub.local"
    use_tls: bool = True
    use_ssl: bool = False
    timeout: float = 30.0


def build_message(sender: str, to: str, subject: str, html_body: str, text_body: Optional[str]) -> MIMEMultipart:
    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = to
    if text_body:
        message.attach(MIMEText(text_body, "plain", "utf-8"))
    message.attach(MIMEText(html_body, "html", "utf-8"))
    return message


class SMTPMailer:
    """Delivers messages through an SMTP relay on a worker thread."""

    def __init__(self, settings: SMTPSettings, *, smtp_factory: Optional[Callable[..., smtplib.SMTP]] = None) -> None:
        self._settings = settings
        self._smtp_factory = smtp_factory

    def _open(self) -> smtplib.SMTP:
        settings = self._settings
        if self._smtp_factory is not None:
            return self._smtp_factory(settings.host, settings.port, timeout=settings.timeout)
        if settings.use_ssl:
            return smtplib.SMTP_SSL(
                settings.host,
                settings.port,
                timeout=settings.timeout,
                context=ssl.create_default_context(),
            )
        return smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout)

    def _deliver(self, to: str, subject: str, html_body: str, text_body: Optional[str]) -> None:
        settings = self._settings
        message = build_message(settings.sender, to, subject, html_body, text_body)
        try:
            with self._open() as server:
                if settings.use_tls and not settings.use_ssl:
                    server.starttls(context=ssl.create_default_context())
                if settings.username and settings.password:
                    server.login(settings.username, settings.password)
                server.sendmail(settings.sender, [to], message.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise MailError(f"Failed to send email to {to}: {exc}") from exc

    async def send(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> None:
        await anyio.to_thread.run_sync(self._deliver, to, subject, html_body, text_body)
        logger.info("Email '%s' sent to %s", subject, to)


class LoggingMailer:
    """Stand-in used when no SMTP relay is configured; it only logs."""

    async def send(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> None:
        logger.warning("Email delivery is disabled; dropping '%s' for %s", subject, to)


__all__ = ["Mailer", "MailError", "SMTPSettings", "SMTPMailer", "LoggingMailer", "build_message"]
