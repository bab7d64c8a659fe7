"""FastAPI application exposing the user, event and registration lifecycles."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .application import Services
from .blobs import Upload
from .errors import EventHubError
from .events import EventFilters, EventPatch, NewEvent
from .models import (
    Event,
    EventStatus,
    OrganizerSummary,
    Registration,
    RegistrationDetails,
    RegistrationStatus,
    User,
    UserRole,
)
from .planner import DEFAULT_LIMIT
from .security import GatewayAuth
from .users import NewUser, UserFilters, UserPatch


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    role: UserRole
    is_active: bool
    is_email_validated: bool
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class OrganizerResponse(BaseModel):
    id: str
    name: str


class EventResponse(BaseModel):
    id: str
    name: str
    description: str
    date: datetime
    status: EventStatus
    organizer_id: str
    organizer: Optional[OrganizerResponse] = None
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class RegistrationResponse(BaseModel):
    id: str
    user_id: str
    event_id: str
    registration_date: datetime
    status: RegistrationStatus
    updated_at: datetime


class RegistrationDetailsResponse(RegistrationResponse):
    event: Optional[EventResponse] = None


class UserPageResponse(BaseModel):
    items: List[UserResponse]
    total: int
    cursor: Optional[str] = None


class EventPageResponse(BaseModel):
    items: List[EventResponse]
    total: int
    cursor: Optional[str] = None


class RegistrationPageResponse(BaseModel):
    items: List[RegistrationDetailsResponse]
    total: int
    cursor: Optional[str] = None


class CreateRegistrationRequest(BaseModel):
    event_id: str = Field(..., min_length=1, max_length=64)

    @field_validator("event_id")
    @classmethod
    def _strip_event_id(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("event_id must not be empty")
        return stripped


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        role=user.role,
        is_active=user.is_active,
        is_email_validated=user.is_email_validated,
        image_url=user.image_url,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def event_to_response(event: Event, organizer: Optional[OrganizerSummary] = None) -> EventResponse:
    return EventResponse(
        id=event.id,
        name=event.name,
        description=event.description,
        date=event.date,
        status=event.status,
        organizer_id=event.organizer_id,
        organizer=OrganizerResponse(id=organizer.id, name=organizer.name) if organizer else None,
        image_url=event.image_url,
        created_at=event.created_at,
        updated_at=event.updated_at,
    )


def registration_to_response(registration: Registration) -> RegistrationResponse:
    return RegistrationResponse(
        id=registration.id,
        user_id=registration.user_id,
        event_id=registration.event_id,
        registration_date=registration.registration_date,
        status=registration.status,
        updated_at=registration.updated_at,
    )


def details_to_response(details: RegistrationDetails) -> RegistrationDetailsResponse:
    registration = details.registration
    return RegistrationDetailsResponse(
        **registration_to_response(registration).model_dump(),
        event=event_to_response(details.event, details.organizer) if details.event else None,
    )


async def _read_upload(image: Optional[UploadFile]) -> Optional[Upload]:
    if image is None or not image.filename:
        return None
    data = await image.read()
    if not data:
        return None
    return Upload(filename=image.filename, content_type=image.content_type, data=data)


def create_app(services: Services, *, auth: GatewayAuth) -> FastAPI:
    app = FastAPI(
        title="EventHub",
        description="Events, registrations and accounts for an event-management platform",
        version="1.0.0",
    )
    app.state.services = services

    async def current_user_id(request: Request) -> str:
        return await auth(request)

    async def optional_user_id(request: Request) -> Optional[str]:
        return await auth.optional_user(request)

    async def with_organizer(event: Event) -> EventResponse:
        organizer = await services.users.find(event.organizer_id)
        summary = OrganizerSummary(id=organizer.id, name=organizer.name) if organizer else None
        return event_to_response(event, summary)

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    router = APIRouter()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    @router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    async def create_user(
        name: str = Form(..., min_length=1, max_length=100),
        email: str = Form(..., min_length=3, max_length=254),
        password: str = Form(..., min_length=8, max_length=128),
        phone: str = Form(..., min_length=1, max_length=32),
        role: UserRole = Form(UserRole.PARTICIPANT),
        image: Optional[UploadFile] = File(None),
        actor_id: Optional[str] = Depends(optional_user_id),
    ) -> UserResponse:
        draft = NewUser(name=name.strip(), email=email, password=password, phone=phone.strip(), role=role)
        user = await services.users.create(draft, await _read_upload(image), actor_id=actor_id)
        return user_to_response(user)

    @router.get("/users", response_model=UserPageResponse)
    async def list_users(
        name: Optional[str] = Query(None),
        email: Optional[str] = Query(None),
        role: Optional[UserRole] = Query(None),
        limit: int = Query(DEFAULT_LIMIT),
        cursor: Optional[str] = Query(None),
        actor_id: str = Depends(current_user_id),
    ) -> UserPageResponse:
        page = await services.users.list(
            UserFilters(name=name, email=email, role=role),
            actor_id,
            limit=limit,
            cursor=cursor,
        )
        return UserPageResponse(items=[user_to_response(user) for user in page.items], total=page.total, cursor=page.cursor)

    @router.get("/users/{user_id}", response_model=UserResponse)
    async def read_user(user_id: str, actor_id: str = Depends(current_user_id)) -> UserResponse:
        return user_to_response(await services.users.get(user_id, actor_id))

    @router.patch("/users/{user_id}", response_model=UserResponse)
    async def update_user(
        user_id: str,
        name: Optional[str] = Form(None, min_length=1, max_length=100),
        email: Optional[str] = Form(None, min_length=3, max_length=254),
        phone: Optional[str] = Form(None, min_length=1, max_length=32),
        password: Optional[str] = Form(None, min_length=8, max_length=128),
        image: Optional[UploadFile] = File(None),
        actor_id: str = Depends(current_user_id),
    ) -> UserResponse:
        patch = UserPatch(name=name, email=email, phone=phone, password=password)
        user = await services.users.update(user_id, patch, actor_id, await _read_upload(image))
        return user_to_response(user)

    @router.delete("/users/{user_id}", response_model=UserResponse)
    async def deactivate_user(user_id: str, actor_id: str = Depends(current_user_id)) -> UserResponse:
        return user_to_response(await services.users.deactivate(user_id, actor_id))

    @router.get("/validate-email", response_model=UserResponse)
    async def validate_email(
        token: str = Query(..., min_length=1),
        _: Optional[str] = Depends(optional_user_id),
    ) -> UserResponse:
        return user_to_response(await services.users.validate_email(token))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    @router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
    async def create_event(
        name: str = Form(..., min_length=1, max_length=200),
        description: str = Form("", max_length=5000),
        date: datetime = Form(...),
        image: Optional[UploadFile] = File(None),
        actor_id: str = Depends(current_user_id),
    ) -> EventResponse:
        draft = NewEvent(name=name.strip(), description=description, date=date)
        event = await services.events.create(draft, actor_id, await _read_upload(image))
        return await with_organizer(event)

    @router.get("/events", response_model=EventPageResponse)
    async def list_events(
        name: Optional[str] = Query(None),
        status_filter: Optional[EventStatus] = Query(None, alias="status"),
        organizer_id: Optional[str] = Query(None),
        date_after: Optional[datetime] = Query(None),
        date_before: Optional[datetime] = Query(None),
        limit: int = Query(DEFAULT_LIMIT),
        cursor: Optional[str] = Query(None),
        _: Optional[str] = Depends(optional_user_id),
    ) -> EventPageResponse:
        filters = EventFilters(
            name=name,
            status=status_filter,
            organizer_id=organizer_id,
            date_after=date_after,
            date_before=date_before,
        )
        page = await services.events.list(filters, limit=limit, cursor=cursor)
        return EventPageResponse(
            items=[event_to_response(event) for event in page.items],
            total=page.total,
            cursor=page.cursor,
        )

    @router.get("/events/{event_id}", response_model=EventResponse)
    async def read_event(event_id: str, actor_id: Optional[str] = Depends(optional_user_id)) -> EventResponse:
        return await with_organizer(await services.events.get(event_id, actor_id))

    @router.patch("/events/{event_id}", response_model=EventResponse)
    async def update_event(
        event_id: str,
        name: Optional[str] = Form(None, min_length=1, max_length=200),
        description: Optional[str] = Form(None, max_length=5000),
        date: Optional[datetime] = Form(None),
        organizer_id: Optional[str] = Form(None, min_length=1),
        image: Optional[UploadFile] = File(None),
        actor_id: str = Depends(current_user_id),
    ) -> EventResponse:
        patch = EventPatch(name=name, description=description, date=date, organizer_id=organizer_id)
        event = await services.events.update(event_id, patch, actor_id, await _read_upload(image))
        return await with_organizer(event)

    @router.delete("/events/{event_id}", response_model=EventResponse)
    async def deactivate_event(event_id: str, actor_id: str = Depends(current_user_id)) -> EventResponse:
        return await with_organizer(await services.events.deactivate(event_id, actor_id))

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------
    @router.post("/registrations", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
    async def create_registration(
        payload: CreateRegistrationRequest,
        actor_id: str = Depends(current_user_id),
    ) -> RegistrationResponse:
        registration = await services.registrations.create(actor_id, payload.event_id)
        return registration_to_response(registration)

    @router.get("/registrations", response_model=RegistrationPageResponse)
    async def list_registrations(
        limit: int = Query(DEFAULT_LIMIT),
        cursor: Optional[str] = Query(None),
        actor_id: str = Depends(current_user_id),
    ) -> RegistrationPageResponse:
        page = await services.registrations.list_for_user(actor_id, limit=limit, cursor=cursor)
        return RegistrationPageResponse(
            items=[details_to_response(details) for details in page.items],
            total=page.total,
            cursor=page.cursor,
        )

    @router.delete("/registrations/{event_id}", response_model=RegistrationResponse)
    async def cancel_registration(event_id: str, actor_id: str = Depends(current_user_id)) -> RegistrationResponse:
        return registration_to_response(await services.registrations.cancel(actor_id, event_id))

    app.include_router(router)

    @app.exception_handler(EventHubError)
    async def handle_service_error(_: object, exc: EventHubError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    return app


__all__ = ["create_app", "event_to_response", "registration_to_response", "user_to_response"]
