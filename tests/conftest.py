from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import pytest

from eventhub.application import Services, build_services
from eventhub.blobs import BlobStoreError, StoredBlob, Upload, build_key
from eventhub.config import Settings
from eventhub.database import Database, SQLiteRecordStore
from eventhub.models import Event, EventStatus, User, UserRole
from eventhub.schema import EVENTS, USERS, TableSchema
from eventhub.storage import StorageError
from eventhub.users import hash_password

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PASSWORD = "correct-horse-battery"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeBlobStore:
    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_upload = False
        self.fail_delete = False

    async def upload(self, upload: Upload, prefix: str, owner_id: str) -> StoredBlob:
        if self.fail_upload:
            raise BlobStoreError("upload refused")
        key = build_key(prefix, owner_id, upload)
        self.objects[key] = upload.data
        return StoredBlob(url=f"https://blobs.test/{key}", key=key)

    async def delete(self, key: str) -> None:
        if self.fail_delete:
            raise BlobStoreError("delete refused")
        self.deleted.append(key)
        self.objects.pop(key, None)


@dataclass
class SentMail:
    to: str
    subject: str
    html_body: str
    text_body: Optional[str]


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: List[SentMail] = []
        self.fail = False

    async def send(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> None:
        if self.fail:
            raise RuntimeError("smtp relay unavailable")
        self.sent.append(SentMail(to, subject, html_body, text_body))


class FlakyStore:
    """Delegates to a real store and fails the write operations named in ``failing``."""

    def __init__(self, inner: SQLiteRecordStore) -> None:
        self.inner = inner
        self.failing: set[Tuple[str, str]] = set()
        self.writes: List[Tuple[str, str]] = []

    def _check(self, operation: str, table: TableSchema) -> None:
        if (operation, table.name) in self.failing:
            raise StorageError(f"{operation} on {table.name} failed")
        self.writes.append((operation, table.name))

    async def get(self, table, key):
        return await self.inner.get(table, key)

    async def put(self, table, item, *, if_not_exists=True):
        self._check("put", table)
        await self.inner.put(table, item, if_not_exists=if_not_exists)

    async def update(self, table, key, changes):
        self._check("update", table)
        return await self.inner.update(table, key, changes)

    async def query(self, table, plan):
        return await self.inner.query(table, plan)

    async def scan(self, table, plan):
        return await self.inner.scan(table, plan)


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "eventhub.sqlite3")
    db.initialize()
    return db


@pytest.fixture
def store(database: Database) -> FlakyStore:
    return FlakyStore(SQLiteRecordStore(database))


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def blobs() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def services(store: FlakyStore, blobs: FakeBlobStore, mailer: RecordingMailer, clock: FixedClock) -> Services:
    settings = Settings(api_url="https://events.test", gateway_tokens=("gateway-token",))
    return build_services(settings, store=store, blobs=blobs, mailer=mailer, clock=clock)


@pytest.fixture
def seed_user(store: FlakyStore, clock: FixedClock) -> Callable[..., Awaitable[User]]:
    async def factory(
        role: UserRole = UserRole.PARTICIPANT,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        is_active: bool = True,
        **extra: Any,
    ) -> User:
        user_id = str(uuid.uuid4())
        user = User(
            id=user_id,
            name=name or f"{role.value.title()} {user_id[:4]}",
            email=email or f"{user_id[:8]}@example.com",
            password_hash=hash_password(PASSWORD),
            phone="+1 555 0100",
            role=role,
            is_active=is_active,
            is_email_validated=True,
            created_at=clock.now(),
            updated_at=clock.now(),
            **extra,
        )
        await store.inner.put(USERS, user.to_item())
        return user

    return factory


@pytest.fixture
def seed_event(store: FlakyStore, clock: FixedClock) -> Callable[..., Awaitable[Event]]:
    async def factory(
        organizer: User,
        *,
        name: Optional[str] = None,
        days_ahead: float = 10,
        status: EventStatus = EventStatus.ACTIVE,
        **extra: Any,
    ) -> Event:
        event_id = str(uuid.uuid4())
        event = Event(
            id=event_id,
            name=name or f"Event {event_id[:6]}",
            description="A gathering",
            date=clock.now() + timedelta(days=days_ahead),
            organizer_id=organizer.id,
            status=status,
            created_at=clock.now(),
            updated_at=clock.now(),
            **extra,
        )
        await store.inner.put(EVENTS, event.to_item())
        return event

    return factory


def image(name: str = "photo.png") -> Upload:
    return Upload(filename=name, content_type="image/png", data=b"\x89PNG fake image")


@pytest.fixture
def upload() -> Callable[..., Upload]:
    return image

