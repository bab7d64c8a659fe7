"""Event lifecycle: creation, updates, soft deletion and listings."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .assets import BlobAssetCoordinator
from .authorization import Action, Actor, authorize
from .blobs import StoredBlob, Upload
from .clock import Clock, SystemClock
from .errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from .lookups import UserLookup
from .models import Event, EventStatus, User, UserRole, ensure_utc, serialize_datetime
from .pagination import Page, PaginationCodec
from .planner import DEFAULT_LIMIT, MAX_LIMIT, Contains, DateRange, Equals, QueryPlanner
from .schema import EVENTS
from .signals import CommitHooks, EventCreated, EventDeactivated
from .storage import RecordStore, execute, storage_errors

logger = logging.getLogger("eventhub.events")

EVENT_IMAGE_PREFIX = "events-images"


@dataclass(frozen=True)
class NewEvent:
    name: str
    description: str
    date: datetime


@dataclass(frozen=True)
class EventPatch:
    """Requested changes; ``None`` leaves a field untouched."""

    name: Optional[str] = None
    description: Optional[str] = None
    date: Optional[datetime] = None
    organizer_id: Optional[str] = None


@dataclass(frozen=True)
class EventFilters:
    name: Optional[str] = None
    status: Optional[EventStatus] = None
    organizer_id: Optional[str] = None
    date_after: Optional[datetime] = None
    date_before: Optional[datetime] = None


class EventLifecycle:
    def __init__(
        self,
        store: RecordStore,
        users: UserLookup,
        assets: BlobAssetCoordinator,
        hooks: CommitHooks,
        *,
        clock: Optional[Clock] = None,
        codec: Optional[PaginationCodec] = None,
    ) -> None:
        self._store = store
        self._users = users
        self._assets = assets
        self._hooks = hooks
        self._clock = clock or SystemClock()
        self._codec = codec or PaginationCodec()
        self._planner = QueryPlanner(EVENTS, codec=self._codec)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    async def find(self, event_id: str) -> Optional[Event]:
        with storage_errors("loading event"):
            item = await self._store.get(EVENTS, {"id": event_id})
        return Event.from_item(item) if item else None

    async def get(self, event_id: str, actor_id: Optional[str] = None) -> Event:
        if actor_id is not None:
            actor = await self._load_user(actor_id, "User not found")
            authorize(Action.READ_EVENT, Actor.from_user(actor))
        event = await self.find(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        return event

    async def _load_user(self, user_id: str, missing: str) -> User:
        user = await self._users.find(user_id)
        if user is None:
            raise NotFoundError(missing)
        return user

    async def name_in_use(self, name: str) -> bool:
        """Return ``True`` when an ACTIVE event already carries exactly ``name``."""

        filters = [Equals("name", name), Equals("status", EventStatus.ACTIVE)]
        cursor: Optional[str] = None
        while True:
            plan = self._planner.plan(filters, limit=MAX_LIMIT, cursor=cursor)
            with storage_errors("checking event name"):
                result = await execute(self._store, EVENTS, plan)
            if result.items:
                return True
            cursor = self._codec.encode(result.last_key)
            if cursor is None:
                return False

    def _ensure_future(self, date: datetime) -> datetime:
        value = ensure_utc(date)
        if value <= self._clock.now():
            raise BadRequestError("Event date cannot be in the past")
        return value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def create(self, draft: NewEvent, organizer_id: str, upload: Optional[Upload] = None) -> Event:
        organizer = await self._load_user(organizer_id, "Organizer not found")
        authorize(Action.CREATE_EVENT, Actor.from_user(organizer))

        if await self.name_in_use(draft.name):
            raise ConflictError("This name is already in use")
        date = self._ensure_future(draft.date)

        event_id = str(uuid.uuid4())
        now = self._clock.now()

        async def write(blob: Optional[StoredBlob]) -> Event:
            event = Event(
                id=event_id,
                name=draft.name,
                description=draft.description,
                date=date,
                organizer_id=organizer.id,
                status=EventStatus.ACTIVE,
                created_at=now,
                updated_at=now,
                image_url=blob.url if blob else None,
                image_key=blob.key if blob else None,
            )
            with storage_errors("creating event"):
                await self._store.put(EVENTS, event.to_item(), if_not_exists=True)
            return event

        event = await self._assets.create(upload, event_id, write)
        logger.info("Event %s created by %s", event.id, organizer.id)
        await self._hooks.committed(EventCreated(event))
        return event

    async def update(
        self,
        event_id: str,
        patch: EventPatch,
        requester_id: str,
        upload: Optional[Upload] = None,
    ) -> Event:
        event = await self.get(event_id)
        requester = await self._load_user(requester_id, "Requester not found")
        actor = Actor.from_user(requester)
        authorize(Action.UPDATE_EVENT, actor, owner_id=event.organizer_id)

        changes: Dict[str, Any] = {}
        if patch.name is not None and patch.name != event.name:
            if await self.name_in_use(patch.name):
                raise ConflictError("This name is already in use")
            changes["name"] = patch.name

        if patch.description is not None and patch.description != event.description:
            changes["description"] = patch.description

        if patch.date is not None and ensure_utc(patch.date) != event.date:
            changes["date"] = serialize_datetime(self._ensure_future(patch.date))

        if patch.organizer_id is not None and patch.organizer_id != event.organizer_id:
            authorize(Action.REASSIGN_EVENT_ORGANIZER, actor)
            target = await self._load_user(patch.organizer_id, "New organizer not found")
            if target.role not in (UserRole.ORGANIZER, UserRole.ADMIN):
                raise ForbiddenError("The new organizer must be an ORGANIZER or ADMIN")
            changes["organizer_id"] = target.id

        if not changes and upload is None:
            return event

        async def write(blob: Optional[StoredBlob]) -> Event:
            updates = dict(changes)
            if blob is not None:
                updates["image_url"] = blob.url
                updates["image_key"] = blob.key
            if not updates:
                return event
            updates["updated_at"] = serialize_datetime(self._clock.now())
            with storage_errors("updating event"):
                item = await self._store.update(EVENTS, {"id": event.id}, updates)
            return Event.from_item(item)

        updated = await self._assets.replace(upload, event.id, event.image_key, write)
        if updated is not event:
            logger.info("Event %s updated by %s", event.id, requester.id)
        return updated

    async def deactivate(self, event_id: str, requester_id: str) -> Event:
        event = await self.get(event_id)
        if event.status is EventStatus.INACTIVE:
            raise BadRequestError("Event is already inactive")

        requester = await self._load_user(requester_id, "Requester not found")
        authorize(Action.DELETE_EVENT, Actor.from_user(requester), owner_id=event.organizer_id)

        changes = {
            "status": EventStatus.INACTIVE.value,
            "updated_at": serialize_datetime(self._clock.now()),
        }
        with storage_errors("deactivating event"):
            item = await self._store.update(EVENTS, {"id": event.id}, changes)
        deactivated = Event.from_item(item)
        logger.info("Event %s deactivated by %s", event.id, requester.id)
        await self._hooks.committed(EventDeactivated(deactivated))
        return deactivated

    async def list(
        self,
        filters: Optional[EventFilters] = None,
        *,
        limit: int = DEFAULT_LIMIT,
        cursor: Optional[str] = None,
    ) -> Page[Event]:
        filters = filters or EventFilters()
        plan = self._planner.plan(
            [
                Equals("status", filters.status) if filters.status is not None else None,
                Equals("organizer_id", filters.organizer_id) if filters.organizer_id else None,
                Contains("name", filters.name) if filters.name else None,
                DateRange("date", after=filters.date_after, before=filters.date_before),
            ],
            limit=limit,
            cursor=cursor,
        )
        with storage_errors("fetching events"):
            result = await execute(self._store, EVENTS, plan)
        events: List[Event] = [Event.from_item(item) for item in result.items]
        return Page(items=events, total=result.count, cursor=self._codec.encode(result.last_key))


__all__ = ["EVENT_IMAGE_PREFIX", "EventFilters", "EventLifecycle", "EventPatch", "NewEvent"]
