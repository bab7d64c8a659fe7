"""Read-only lookups shared between lifecycles without importing each other."""
from __future__ import annotations

from typing import Optional, Protocol

from .models import Event, User


class EventLookup(Protocol):
    async def find(self, event_id: str) -> Optional[Event]: ...


class UserLookup(Protocol):
    async def find(self, user_id: str) -> Optional[User]: ...


__all__ = ["EventLookup", "UserLookup"]
