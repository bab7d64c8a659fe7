"""Domain events published after a write has been committed."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Union

from .models import Event, Registration, User

logger = logging.getLogger("eventhub.signals")


@dataclass(frozen=True)
class UserCreated:
    user: User


@dataclass(frozen=True)
class UserEmailChanged:
    user: User


@dataclass(frozen=True)
class UserDeactivated:
    user: User


@dataclass(frozen=True)
class EventCreated:
    event: Event


@dataclass(frozen=True)
class EventDeactivated:
    event: Event


@dataclass(frozen=True)
class RegistrationCreated:
    registration: Registration
    event: Event


@dataclass(frozen=True)
class RegistrationCancelled:
    registration: Registration
    event: Optional[Event] = None


DomainEvent = Union[
    UserCreated,
    UserEmailChanged,
    UserDeactivated,
    EventCreated,
    EventDeactivated,
    RegistrationCreated,
    RegistrationCancelled,
]

Hook = Callable[[DomainEvent], Awaitable[None]]


class CommitHooks:
    """Ordered list of callbacks run after the authoritative write succeeded.

    A failing hook is logged and skipped; it never reaches the caller.
    """

    def __init__(self) -> None:
        self._hooks: List[Hook] = []

    def register(self, hook: Hook) -> Hook:
        self._hooks.append(hook)
        return hook

    def __len__(self) -> int:
        return len(self._hooks)

    async def committed(self, event: DomainEvent) -> None:
        for hook in list(self._hooks):
            try:
                await hook(event)
            except Exception:
                logger.exception("Commit hook %r failed for %s", hook, type(event).__name__)


__all__ = [
    "CommitHooks",
    "DomainEvent",
    "Hook",
    "UserCreated",
    "UserEmailChanged",
    "UserDeactivated",
    "EventCreated",
    "EventDeactivated",
    "RegistrationCreated",
    "RegistrationCancelled",
]
