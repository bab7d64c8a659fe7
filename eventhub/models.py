"""Domain records and their document representations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    ORGANIZER = "ORGANIZER"
    PARTICIPANT = "PARTICIPANT"


class EventStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class RegistrationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def serialize_datetime(value: datetime) -> str:
    # Fixed width so that string order matches chronological order in sort keys.
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_datetime(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def _optional_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return parse_datetime(str(value))


def _compact(item: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in item.items() if value is not None}


@dataclass(frozen=True)
class User:
    """An account stored in the users table."""

    id: str
    name: str
    email: str
    password_hash: str
    phone: str
    role: UserRole
    is_active: bool
    is_email_validated: bool
    created_at: datetime
    updated_at: datetime
    image_url: Optional[str] = None
    image_key: Optional[str] = None
    email_validation_token: Optional[str] = None
    email_validation_token_expires: Optional[datetime] = None

    def to_item(self) -> Dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "name": self.name,
                "email": self.email,
                "password_hash": self.password_hash,
                "phone": self.phone,
                "role": self.role.value,
                "is_active": self.is_active,
                "is_email_validated": self.is_email_validated,
                "image_url": self.image_url,
                "image_key": self.image_key,
                "email_validation_token": self.email_validation_token,
                "email_validation_token_expires": (
                    serialize_datetime(self.email_validation_token_expires)
                    if self.email_validation_token_expires
                    else None
                ),
                "created_at": serialize_datetime(self.created_at),
                "updated_at": serialize_datetime(self.updated_at),
            }
        )

    @staticmethod
    def from_item(item: Mapping[str, Any]) -> "User":
        return User(
            id=str(item["id"]),
            name=str(item["name"]),
            email=str(item["email"]),
            password_hash=str(item.get("password_hash", "")),
            phone=str(item.get("phone", "")),
            role=UserRole(item["role"]),
            is_active=bool(item.get("is_active", True)),
            is_email_validated=bool(item.get("is_email_validated", False)),
            image_url=item.get("image_url"),
            image_key=item.get("image_key"),
            email_validation_token=item.get("email_validation_token"),
            email_validation_token_expires=_optional_datetime(item.get("email_validation_token_expires")),
            created_at=parse_datetime(str(item["created_at"])),
            updated_at=parse_datetime(str(item["updated_at"])),
        )


@dataclass(frozen=True)
class Event:
    """An event owned by an organizer."""

    id: str
    name: str
    description: str
    date: datetime
    organizer_id: str
    status: EventStatus
    created_at: datetime
    updated_at: datetime
    image_url: Optional[str] = None
    image_key: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "name": self.name,
                "description": self.description,
                "date": serialize_datetime(self.date),
                "organizer_id": self.organizer_id,
                "status": self.status.value,
                "image_url": self.image_url,
                "image_key": self.image_key,
                "created_at": serialize_datetime(self.created_at),
                "updated_at": serialize_datetime(self.updated_at),
            }
        )

    @staticmethod
    def from_item(item: Mapping[str, Any]) -> "Event":
        return Event(
            id=str(item["id"]),
            name=str(item["name"]),
            description=str(item.get("description", "")),
            date=parse_datetime(str(item["date"])),
            organizer_id=str(item["organizer_id"]),
            status=EventStatus(item["status"]),
            image_url=item.get("image_url"),
            image_key=item.get("image_key"),
            created_at=parse_datetime(str(item["created_at"])),
            updated_at=parse_datetime(str(item["updated_at"])),
        )


@dataclass(frozen=True)
class Registration:
    """A user's registration for an event, keyed by ``(user_id, event_id)``."""

    id: str
    user_id: str
    event_id: str
    registration_date: datetime
    status: RegistrationStatus
    updated_at: datetime

    def to_item(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_id": self.event_id,
            "registration_date": serialize_datetime(self.registration_date),
            "status": self.status.value,
            "updated_at": serialize_datetime(self.updated_at),
        }

    @staticmethod
    def from_item(item: Mapping[str, Any]) -> "Registration":
        return Registration(
            id=str(item["id"]),
            user_id=str(item["user_id"]),
            event_id=str(item["event_id"]),
            registration_date=parse_datetime(str(item["registration_date"])),
            status=RegistrationStatus(item["status"]),
            updated_at=parse_datetime(str(item["updated_at"])),
        )


@dataclass(frozen=True)
class OrganizerSummary:
    id: str
    name: str


@dataclass(frozen=True)
class RegistrationDetails:
    """A registration joined with its event and the event's organizer."""

    registration: Registration
    event: Optional[Event] = None
    organizer: Optional[OrganizerSummary] = None


__all__ = [
    "UserRole",
    "EventStatus",
    "RegistrationStatus",
    "User",
    "Event",
    "Registration",
    "OrganizerSummary",
    "RegistrationDetails",
    "ensure_utc",
    "serialize_datetime",
    "parse_datetime",
]
