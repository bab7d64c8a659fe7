"""Registrations of users for events."""
from __future__ import annotations

import logging
import uuid
from typing import List, Optional

import anyio

from .authorization import Action, Actor, authorize
from .clock import Clock, SystemClock
from .errors import BadRequestError, ConflictError, EventHubError, NotFoundError
from .lookups import EventLookup, UserLookup
from .models import (
    EventStatus,
    OrganizerSummary,
    Registration,
    RegistrationDetails,
    RegistrationStatus,
    User,
    serialize_datetime,
)
from .pagination import Page, PaginationCodec
from .planner import DEFAULT_LIMIT, Equals, QueryPlanner
from .schema import REGISTRATIONS
from .signals import CommitHooks, RegistrationCancelled, RegistrationCreated
from .storage import RecordStore, execute, storage_errors

logger = logging.getLogger("eventhub.registrations")


class RegistrationLifecycle:
    def __init__(
        self,
        store: RecordStore,
        users: UserLookup,
        events: EventLookup,
        hooks: CommitHooks,
        *,
        clock: Optional[Clock] = None,
        codec: Optional[PaginationCodec] = None,
    ) -> None:
        self._store = store
        self._users = users
        self._events = events
        self._hooks = hooks
        self._clock = clock or SystemClock()
        self._codec = codec or PaginationCodec()
        self._planner = QueryPlanner(REGISTRATIONS, codec=self._codec)

    async def _authorized_user(self, user_id: str, action: Action) -> User:
        user = await self._users.find(user_id)
        if user is None:
            raise NotFoundError("User not found")
        authorize(action, Actor.from_user(user), owner_id=user.id)
        return user

    async def find(self, user_id: str, event_id: str) -> Optional[Registration]:
        with storage_errors("loading registration"):
            item = await self._store.get(REGISTRATIONS, {"user_id": user_id, "event_id": event_id})
        return Registration.from_item(item) if item else None

    async def create(self, user_id: str, event_id: str) -> Registration:
        user = await self._authorized_user(user_id, Action.CREATE_REGISTRATION)

        event = await self._events.find(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        now = self._clock.now()
        if event.status is not EventStatus.ACTIVE:
            raise BadRequestError("Event is not active")
        if event.date <= now:
            raise BadRequestError("Event has already taken place")

        if await self.find(user.id, event.id) is not None:
            raise ConflictError("User is already registered for this event")

        registration = Registration(
            id=str(uuid.uuid4()),
            user_id=user.id,
            event_id=event.id,
            registration_date=now,
            status=RegistrationStatus.ACTIVE,
            updated_at=now,
        )
        with storage_errors("creating registration", conflict="User is already registered for this event"):
            await self._store.put(REGISTRATIONS, registration.to_item(), if_not_exists=True)

        logger.info("User %s registered for event %s", user.id, event.id)
        await self._hooks.committed(RegistrationCreated(registration, event))
        return registration

    async def cancel(self, user_id: str, event_id: str) -> Registration:
        user = await self._authorized_user(user_id, Action.CANCEL_REGISTRATION)

        registration = await self.find(user.id, event_id)
        if registration is None:
            raise NotFoundError("Registration not found")
        if registration.status is RegistrationStatus.CANCELLED:
            raise ConflictError("Registration is already cancelled")

        now = self._clock.now()
        event = await self._events.find(event_id)
        if event is not None and event.date <= now:
            raise BadRequestError("Cannot cancel a registration for a past event")

        changes = {
            "status": RegistrationStatus.CANCELLED.value,
            "updated_at": serialize_datetime(now),
        }
        with storage_errors("cancelling registration"):
            item = await self._store.update(
                REGISTRATIONS,
                {"user_id": registration.user_id, "event_id": registration.event_id},
                changes,
            )
        cancelled = Registration.from_item(item)
        logger.info("User %s cancelled registration for event %s", user.id, event_id)
        await self._hooks.committed(RegistrationCancelled(cancelled, event))
        return cancelled

    async def list_for_user(
        self,
        user_id: str,
        *,
        limit: int = DEFAULT_LIMIT,
        cursor: Optional[str] = None,
    ) -> Page[RegistrationDetails]:
        user = await self._authorized_user(user_id, Action.LIST_REGISTRATIONS)

        plan = self._planner.plan(
            [Equals("user_id", user.id), Equals("status", RegistrationStatus.ACTIVE)],
            limit=limit,
            cursor=cursor,
        )
        with storage_errors("fetching registrations"):
            result = await execute(self._store, REGISTRATIONS, plan)

        registrations = [Registration.from_item(item) for item in result.items]
        details: List[Optional[RegistrationDetails]] = [None] * len(registrations)
        failures: List[EventHubError] = []

        async def join(position: int, registration: Registration) -> None:
            # Task groups wrap escaping errors in an ExceptionGroup; keep service errors unwrapped.
            try:
                details[position] = await self._details(registration)
            except EventHubError as exc:
                failures.append(exc)

        async with anyio.create_task_group() as group:
            for position, registration in enumerate(registrations):
                group.start_soon(join, position, registration)

        if failures:
            raise failures[0]

        return Page(
            items=[entry for entry in details if entry is not None],
            total=result.count,
            cursor=self._codec.encode(result.last_key),
        )

    async def _details(self, registration: Registration) -> RegistrationDetails:
        event = await self._events.find(registration.event_id)
        if event is None:
            return RegistrationDetails(registration=registration)
        organizer = await self._users.find(event.organizer_id)
        summary = OrganizerSummary(id=organizer.id, name=organizer.name) if organizer else None
        return RegistrationDetails(registration=registration, event=event, organizer=summary)


__all__ = ["RegistrationLifecycle"]
