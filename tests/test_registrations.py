from __future__ import annotations

from dataclasses import replace

import pytest

from eventhub.errors import BadRequestError, ConflictError, ForbiddenError, InternalError, NotFoundError
from eventhub.models import EventStatus, Registration, RegistrationStatus, UserRole
from eventhub.schema import REGISTRATIONS

pytestmark = pytest.mark.anyio


async def test_register_for_future_active_event(services, seed_user, seed_event, mailer) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    participant = await seed_user()
    event = await seed_event(organizer)

    registration = await services.registrations.create(participant.id, event.id)

    assert registration.status is RegistrationStatus.ACTIVE
    assert registration.user_id == participant.id
    assert registration.event_id == event.id
    assert await services.registrations.find(participant.id, event.id) == registration
    assert [(mail.to, mail.subject) for mail in mailer.sent] == [(participant.email, "Registration Confirmed")]
    assert event.name in mailer.sent[0].html_body


async def test_duplicate_registration_conflicts(services, seed_user, seed_event) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    participant = await seed_user()
    event = await seed_event(organizer)
    await services.registrations.create(participant.id, event.id)

    with pytest.raises(ConflictError):
        await services.registrations.create(participant.id, event.id)


async def test_concurrent_duplicate_maps_to_conflict(services, seed_user, seed_event) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    participant = await seed_user()
    event = await seed_event(organizer)
    await services.registrations.create(participant.id, event.id)

    async def missing(user_id, event_id):
        return None

    services.registrations.find = missing

    with pytest.raises(ConflictError, match="already registered"):
        await services.registrations.create(participant.id, event.id)


async def test_cannot_register_for_inactive_or_past_events(services, seed_user, seed_event) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    participant = await seed_user()
    inactive = await seed_event(organizer, status=EventStatus.INACTIVE)
    past = await seed_event(organizer, days_ahead=-1)

    with pytest.raises(BadRequestError):
        await services.registrations.create(participant.id, inactive.id)
    with pytest.raises(BadRequestError):
        await services.registrations.create(participant.id, past.id)
    with pytest.raises(NotFoundError):
        await services.registrations.create(participant.id, "no-such-event")
    with pytest.raises(NotFoundError):
        await services.registrations.create("no-such-user", inactive.id)


async def test_inactive_user_cannot_register(services, seed_user, seed_event) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    dormant = await seed_user(is_active=False)
    event = await seed_event(organizer)

    with pytest.raises(ForbiddenError):
        await services.registrations.create(dormant.id, event.id)


async def test_cancel_marks_registration_cancelled(services, seed_user, seed_event, mailer, database) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    participant = await seed_user()
    event = await seed_event(organizer)
    await services.registrations.create(participant.id, event.id)

    cancelled = await services.registrations.cancel(participant.id, event.id)

    assert cancelled.status is RegistrationStatus.CANCELLED
    stored = database.get_item(REGISTRATIONS, {"user_id": participant.id, "event_id": event.id})
    assert stored["status"] == "CANCELLED"
    assert [mail.subject for mail in mailer.sent] == ["Registration Confirmed", "Registration Cancelled"]

    with pytest.raises(ConflictError):
        await services.registrations.cancel(participant.id, event.id)


async def test_cancel_unknown_registration(services, seed_user) -> None:
    participant = await seed_user()

    with pytest.raises(NotFoundError):
        await services.registrations.cancel(participant.id, "never-registered")


async def test_cannot_cancel_after_event_date(services, seed_user, seed_event, clock) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    participant = await seed_user()
    event = await seed_event(organizer, days_ahead=2)
    await services.registrations.create(participant.id, event.id)
    clock.advance(days=3)

    with pytest.raises(BadRequestError):
        await services.registrations.cancel(participant.id, event.id)


async def test_list_joins_event_and_organizer(services, seed_user, seed_event) -> None:
    organizer = await seed_user(UserRole.ORGANIZER, name="Olive Organizer")
    participant = await seed_user()
    first = await seed_event(organizer, name="First")
    second = await seed_event(organizer, name="Second")
    dropped = await seed_event(organizer, name="Dropped")
    for event in (first, second, dropped):
        await services.registrations.create(participant.id, event.id)
    await services.registrations.cancel(participant.id, dropped.id)

    page = await services.registrations.list_for_user(participant.id, limit=50)

    assert {entry.event.name for entry in page.items} == {"First", "Second"}
    assert all(entry.organizer is not None for entry in page.items)
    assert {entry.organizer.name for entry in page.items} == {"Olive Organizer"}
    assert all(entry.registration.status is RegistrationStatus.ACTIVE for entry in page.items)
    assert page.cursor is None


async def test_list_tolerates_missing_event_and_organizer(services, seed_user, seed_event, database, clock) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    participant = await seed_user()
    orphaned = await seed_event(replace(organizer, id="departed-organizer"), name="Orphaned")
    await services.registrations.create(participant.id, orphaned.id)
    vanished = Registration(
        id="r-vanished",
        user_id=participant.id,
        event_id="vanished-event",
        registration_date=clock.now(),
        status=RegistrationStatus.ACTIVE,
        updated_at=clock.now(),
    )
    database.put_item(REGISTRATIONS, vanished.to_item())

    page = await services.registrations.list_for_user(participant.id)

    entries = {entry.registration.event_id: entry for entry in page.items}
    assert set(entries) == {orphaned.id, "vanished-event"}
    assert entries[orphaned.id].event.name == "Orphaned"
    assert entries[orphaned.id].organizer is None
    assert entries["vanished-event"].event is None
    assert entries["vanished-event"].organizer is None


async def test_list_join_failure_surfaces_as_internal_error(services, seed_user, seed_event, monkeypatch) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    participant = await seed_user()
    event = await seed_event(organizer)
    await services.registrations.create(participant.id, event.id)

    async def broken(event_id):
        raise InternalError("Failed to load event")

    monkeypatch.setattr(services.events, "find", broken)

    with pytest.raises(InternalError, match="Failed to load event"):
        await services.registrations.list_for_user(participant.id)


async def test_list_paginates_with_cursor(services, seed_user, seed_event) -> None:
    organizer = await seed_user(UserRole.ORGANIZER)
    participant = await seed_user()
    for _ in range(3):
        event = await seed_event(organizer)
        await services.registrations.create(participant.id, event.id)

    first = await services.registrations.list_for_user(participant.id, limit=2)
    second = await services.registrations.list_for_user(participant.id, limit=2, cursor=first.cursor)

    assert len(first.items) == 2
    assert first.cursor is not None
    assert len(second.items) == 1
    seen = {entry.registration.event_id for entry in first.items + second.items}
    assert len(seen) == 3


async def test_list_is_private_to_the_user(services, seed_user) -> None:
    participant = await seed_user()
    dormant = await seed_user(is_active=False)

    page = await services.registrations.list_for_user(participant.id)
    assert page.items == []
    with pytest.raises(ForbiddenError):
        await services.registrations.list_for_user(dormant.id)
