from __future__ import annotations

import uuid
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from eventhub.api import create_app
from eventhub.models import User, UserRole
from eventhub.schema import USERS
from eventhub.security import GatewayAuth
from eventhub.users import hash_password

TOKEN = "gateway-token"


@pytest.fixture
def client(services) -> TestClient:
    return TestClient(create_app(services, auth=GatewayAuth([TOKEN])))


@pytest.fixture
def make_user(database, clock):
    def factory(role: UserRole = UserRole.PARTICIPANT, name: str = "Sam Sample") -> User:
        user_id = str(uuid.uuid4())
        user = User(
            id=user_id,
            name=name,
            email=f"{user_id[:8]}@example.com",
            password_hash=hash_password("long-enough-secret"),
            phone="+1 555 0101",
            role=role,
            is_active=True,
            is_email_validated=True,
            created_at=clock.now(),
            updated_at=clock.now(),
        )
        database.put_item(USERS, user.to_item())
        return user

    return factory


def _headers(user_id: str | None = None) -> Dict[str, str]:
    headers = {"Authorization": f"Bearer {TOKEN}"}
    if user_id:
        headers["X-User-Id"] = user_id
    return headers


def _create_event(client: TestClient, organizer_id: str, name: str = "Launch Party") -> dict:
    response = client.post(
        "/events",
        data={"name": name, "description": "Drinks and demos", "date": "2026-06-01T18:00:00+00:00"},
        headers=_headers(organizer_id),
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_healthz_is_public(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_gateway_token_is_required(client: TestClient) -> None:
    assert client.get("/events").status_code == 401
    assert client.get("/events", headers={"Authorization": "Bearer wrong"}).status_code == 403


def test_user_identity_is_required_for_protected_routes(client: TestClient) -> None:
    response = client.get("/registrations", headers=_headers())

    assert response.status_code == 401


def test_sign_up_and_validate_email(client: TestClient, database, mailer) -> None:
    response = client.post(
        "/users",
        data={"name": "Ada", "email": "Ada@Example.com", "password": "a-very-long-secret", "phone": "+44 1"},
        files={"image": ("ada.png", b"\x89PNG", "image/png")},
        headers=_headers(),
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["email"] == "ada@example.com"
    assert body["role"] == "PARTICIPANT"
    assert body["is_email_validated"] is False
    assert body["image_url"].startswith("https://blobs.test/user-profiles/")
    assert "password_hash" not in body
    assert [mail.subject for mail in mailer.sent] == ["Email Verification"]

    token = database.get_item(USERS, {"id": body["id"]})["email_validation_token"]
    validated = client.get("/validate-email", params={"token": token}, headers=_headers())
    assert validated.status_code == 200
    assert validated.json()["is_email_validated"] is True

    again = client.get("/validate-email", params={"token": token}, headers=_headers())
    assert again.status_code == 400
    assert again.json() == {"detail": "Invalid email validation token"}


def test_duplicate_email_is_conflict(client: TestClient, make_user) -> None:
    existing = make_user()
    response = client.post(
        "/users",
        data={"name": "Copy", "email": existing.email, "password": "a-very-long-secret", "phone": "1"},
        headers=_headers(),
    )

    assert response.status_code == 409


def test_user_profile_access(client: TestClient, make_user) -> None:
    alice = make_user(name="Alice")
    bob = make_user(name="Bob")

    own = client.get(f"/users/{alice.id}", headers=_headers(alice.id))
    assert own.status_code == 200
    assert own.json()["name"] == "Alice"

    forbidden = client.get(f"/users/{alice.id}", headers=_headers(bob.id))
    assert forbidden.status_code == 403

    renamed = client.patch(f"/users/{alice.id}", data={"name": "Alice B."}, headers=_headers(alice.id))
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Alice B."


def test_user_listing_requires_admin(client: TestClient, make_user) -> None:
    admin = make_user(UserRole.ADMIN)
    participant = make_user()

    assert client.get("/users", headers=_headers(participant.id)).status_code == 403

    response = client.get("/users", params={"role": "PARTICIPANT"}, headers=_headers(admin.id))
    assert response.status_code == 200
    assert [item["id"] for item in response.json()["items"]] == [participant.id]


def test_event_lifecycle_over_http(client: TestClient, make_user) -> None:
    organizer = make_user(UserRole.ORGANIZER, name="Olive")
    event = _create_event(client, organizer.id)

    assert event["status"] == "ACTIVE"
    assert event["organizer"] == {"id": organizer.id, "name": "Olive"}

    duplicate = client.post(
        "/events",
        data={"name": "Launch Party", "description": "", "date": "2026-07-01T18:00:00+00:00"},
        headers=_headers(organizer.id),
    )
    assert duplicate.status_code == 409

    listed = client.get("/events", params={"status": "ACTIVE"}, headers=_headers())
    assert [item["id"] for item in listed.json()["items"]] == [event["id"]]

    fetched = client.get(f"/events/{event['id']}", headers=_headers())
    assert fetched.status_code == 200

    updated = client.patch(
        f"/events/{event['id']}",
        data={"description": "Now with a keynote"},
        headers=_headers(organizer.id),
    )
    assert updated.json()["description"] == "Now with a keynote"

    deleted = client.delete(f"/events/{event['id']}", headers=_headers(organizer.id))
    assert deleted.json()["status"] == "INACTIVE"


def test_participants_cannot_create_events(client: TestClient, make_user) -> None:
    participant = make_user()
    response = client.post(
        "/events",
        data={"name": "Nope", "description": "", "date": "2026-06-01T18:00:00+00:00"},
        headers=_headers(participant.id),
    )

    assert response.status_code == 403


def test_past_event_date_is_bad_request(client: TestClient, make_user) -> None:
    organizer = make_user(UserRole.ORGANIZER)
    response = client.post(
        "/events",
        data={"name": "Yesterday", "description": "", "date": "2020-01-01T00:00:00+00:00"},
        headers=_headers(organizer.id),
    )

    assert response.status_code == 400


def test_registration_flow(client: TestClient, make_user) -> None:
    organizer = make_user(UserRole.ORGANIZER, name="Olive")
    participant = make_user()
    event = _create_event(client, organizer.id)

    created = client.post("/registrations", json={"event_id": event["id"]}, headers=_headers(participant.id))
    assert created.status_code == 201
    assert created.json()["status"] == "ACTIVE"

    duplicate = client.post("/registrations", json={"event_id": event["id"]}, headers=_headers(participant.id))
    assert duplicate.status_code == 409

    listed = client.get("/registrations", headers=_headers(participant.id)).json()
    assert listed["total"] == 1
    assert listed["items"][0]["event"]["name"] == "Launch Party"
    assert listed["items"][0]["event"]["organizer"]["name"] == "Olive"

    cancelled = client.delete(f"/registrations/{event['id']}", headers=_headers(participant.id))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"


def test_unknown_event_registration_is_not_found(client: TestClient, make_user) -> None:
    participant = make_user()

    response = client.post("/registrations", json={"event_id": "missing"}, headers=_headers(participant.id))

    assert response.status_code == 404
    assert response.json() == {"detail": "Event not found"}


@pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 51}, {"cursor": "%%%"}])
def test_invalid_listing_parameters(client: TestClient, params) -> None:
    response = client.get("/events", params=params, headers=_headers())

    assert response.status_code == 400
