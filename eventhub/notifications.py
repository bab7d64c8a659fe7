"""Lifecycle emails rendered from templates and sent after commit."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .lookups import UserLookup
from .mail import Mailer
from .models import User
from .signals import (
    DomainEvent,
    EventCreated,
    EventDeactivated,
    RegistrationCancelled,
    RegistrationCreated,
    UserCreated,
    UserDeactivated,
    UserEmailChanged,
)

logger = logging.getLogger("eventhub.notifications")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates" / "mail"


@dataclass(frozen=True)
class Notification:
    recipient: str
    subject: str
    template: str
    context: Dict[str, Any] = field(default_factory=dict)


def _format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%d %b %Y %H:%M %Z")


def _template_environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["datetime"] = _format_datetime
    return env


class NotificationDispatcher:
    """Commit hook that turns domain events into emails.

    Every failure, whether resolving the recipient, rendering or sending, is
    logged and dropped.
    """

    def __init__(self, mailer: Mailer, users: UserLookup, api_url: str) -> None:
        self._mailer = mailer
        self._users = users
        self._api_url = api_url.rstrip("/")
        self._templates = _template_environment()

    async def __call__(self, event: DomainEvent) -> None:
        try:
            notification = await self.build(event)
            if notification is None:
                return
            await self.deliver(notification)
        except Exception:
            logger.exception("Failed to dispatch notification for %s", type(event).__name__)

    def verification_link(self, token: str) -> str:
        return f"{self._api_url}/validate-email?{urlencode({'token': token})}"

    async def _recipient(self, user_id: str) -> Optional[User]:
        user = await self._users.find(user_id)
        if user is None:
            logger.warning("Notification recipient %s no longer exists", user_id)
        return user

    async def build(self, event: DomainEvent) -> Optional[Notification]:
        if isinstance(event, (UserCreated, UserEmailChanged)):
            user = event.user
            if not user.email_validation_token:
                return None
            return Notification(
                recipient=user.email,
                subject="Email Verification",
                template="email_verification",
                context={"user": user, "link": self.verification_link(user.email_validation_token)},
            )

        if isinstance(event, UserDeactivated):
            return Notification(
                recipient=event.user.email,
                subject="Account Deactivated",
                template="account_deactivated",
                context={"user": event.user},
            )

        if isinstance(event, (EventCreated, EventDeactivated)):
            organizer = await self._recipient(event.event.organizer_id)
            if organizer is None:
                return None
            created = isinstance(event, EventCreated)
            return Notification(
                recipient=organizer.email,
                subject="Event Created Successfully" if created else "Event Deleted",
                template="event_created" if created else "event_deactivated",
                context={"user": organizer, "event": event.event},
            )

        if isinstance(event, RegistrationCreated):
            participant = await self._recipient(event.registration.user_id)
            if participant is None:
                return None
            return Notification(
                recipient=participant.email,
                subject="Registration Confirmed",
                template="registration_confirmed",
                context={"user": participant, "event": event.event, "registration": event.registration},
            )

        if isinstance(event, RegistrationCancelled):
            participant = await self._recipient(event.registration.user_id)
            if participant is None:
                return None
            return Notification(
                recipient=participant.email,
                subject="Registration Cancelled",
                template="registration_cancelled",
                context={"user": participant, "event": event.event, "registration": event.registration},
            )

        return None

    def render(self, notification: Notification) -> tuple[str, str]:
        html = self._templates.get_template(f"{notification.template}.html").render(**notification.context)
        text = self._templates.get_template(f"{notification.template}.txt").render(**notification.context)
        return html, text

    async def deliver(self, notification: Notification) -> None:
        html, text = self.render(notification)
        await self._mailer.send(notification.recipient, notification.subject, html, text)
        logger.info("Sent %s notification to %s", notification.template, notification.recipient)


__all__ = ["Notification", "NotificationDispatcher", "TEMPLATE_DIR"]
