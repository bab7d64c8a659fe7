"""Role and ownership rules evaluated at the top of every lifecycle operation."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .errors import ForbiddenError
from .models import User, UserRole


class Action(str, Enum):
    CREATE_EVENT = "create_event"
    READ_EVENT = "read_event"
    UPDATE_EVENT = "update_event"
    DELETE_EVENT = "delete_event"
    REASSIGN_EVENT_ORGANIZER = "reassign_event_organizer"
    CREATE_REGISTRATION = "create_registration"
    CANCEL_REGISTRATION = "cancel_registration"
    LIST_REGISTRATIONS = "list_registrations"
    CREATE_ADMIN = "create_admin"
    READ_USER = "read_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    LIST_USERS = "list_users"


@dataclass(frozen=True)
class Actor:
    id: str
    role: UserRole
    is_active: bool = True

    @staticmethod
    def from_user(user: User) -> "Actor":
        return Actor(id=user.id, role=user.role, is_active=user.is_active)


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class Deny:
    reason: str


Decision = Union[Allow, Deny]

_ADMIN_ONLY = {Action.REASSIGN_EVENT_ORGANIZER, Action.LIST_USERS, Action.CREATE_ADMIN}
_OWNED_EVENT_ACTIONS = {Action.UPDATE_EVENT, Action.DELETE_EVENT}
_SELF_ACTIONS = {
    Action.CREATE_REGISTRATION,
    Action.CANCEL_REGISTRATION,
    Action.LIST_REGISTRATIONS,
    Action.READ_USER,
    Action.UPDATE_USER,
    Action.DELETE_USER,
}


def evaluate(action: Action, actor: Actor, owner_id: Optional[str] = None) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on a resource owned by ``owner_id``."""

    if not actor.is_active:
        return Deny("Your account is not active")

    if actor.role is UserRole.ADMIN:
        return Allow()

    if action in _ADMIN_ONLY:
        return Deny("Only administrators may perform this action")

    if action is Action.READ_EVENT:
        return Allow()

    if action is Action.CREATE_EVENT:
        if actor.role is UserRole.ORGANIZER:
            return Allow()
        return Deny("You are not authorized to create events")

    if action in _OWNED_EVENT_ACTIONS:
        if actor.role is UserRole.ORGANIZER and owner_id == actor.id:
            return Allow()
        return Deny("You are not authorized to modify this event")

    if action in _SELF_ACTIONS:
        if owner_id is not None and owner_id == actor.id:
            return Allow()
        return Deny("You do not have permission to access this resource")

    return Deny("Action is not permitted")


def authorize(action: Action, actor: Actor, owner_id: Optional[str] = None) -> None:
    """Raise :class:`ForbiddenError` unless :func:`evaluate` allows the action."""

    decision = evaluate(action, actor, owner_id)
    if isinstance(decision, Deny):
        raise ForbiddenError(decision.reason)


__all__ = ["Action", "Actor", "Allow", "Deny", "Decision", "evaluate", "authorize"]
