"""User accounts: sign-up, profile changes, deactivation and email validation."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from passlib.context import CryptContext

from .assets import BlobAssetCoordinator
from .authorization import Action, Actor, authorize
from .blobs import StoredBlob, Upload
from .clock import Clock, SystemClock
from .errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from .models import User, UserRole, serialize_datetime
from .pagination import Page, PaginationCodec
from .planner import DEFAULT_LIMIT, Contains, Equals, QueryPlanner
from .schema import USERS
from .signals import CommitHooks, UserCreated, UserDeactivated, UserEmailChanged
from .storage import RecordStore, execute, storage_errors

logger = logging.getLogger("eventhub.users")

PROFILE_IMAGE_PREFIX = "user-profiles"
DEFAULT_EMAIL_TOKEN_TTL = timedelta(hours=24)

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password or not password_hash:
        return False
    return _pwd_context.verify(password, password_hash)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class NewUser:
    name: str
    email: str
    password: str
    phone: str
    role: UserRole = UserRole.PARTICIPANT


@dataclass(frozen=True)
class UserPatch:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class UserFilters:
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None


class UserLifecycle:
    def __init__(
        self,
        store: RecordStore,
        assets: BlobAssetCoordinator,
        hooks: CommitHooks,
        *,
        clock: Optional[Clock] = None,
        codec: Optional[PaginationCodec] = None,
        email_token_ttl: timedelta = DEFAULT_EMAIL_TOKEN_TTL,
    ) -> None:
        self._store = store
        self._assets = assets
        self._hooks = hooks
        self._clock = clock or SystemClock()
        self._codec = codec or PaginationCodec()
        self._planner = QueryPlanner(USERS, codec=self._codec)
        self._email_token_ttl = email_token_ttl

    async def find(self, user_id: str) -> Optional[User]:
        with storage_errors("loading user"):
            item = await self._store.get(USERS, {"id": user_id})
        return User.from_item(item) if item else None

    async def _require(self, user_id: str, missing: str = "User not found") -> User:
        user = await self.find(user_id)
        if user is None:
            raise NotFoundError(missing)
        return user

    async def _find_one(self, attribute: str, value: str) -> Optional[User]:
        plan = self._planner.plan([Equals(attribute, value)], limit=1)
        with storage_errors("looking up user"):
            result = await execute(self._store, USERS, plan)
        if not result.items:
            return None
        return User.from_item(result.items[0])

    async def find_by_email(self, email: str) -> Optional[User]:
        return await self._find_one("email", normalize_email(email))

    def _new_token(self, now: datetime) -> Tuple[str, datetime]:
        return str(uuid.uuid4()), now + self._email_token_ttl

    async def create(self, draft: NewUser, upload: Optional[Upload] = None, actor_id: Optional[str] = None) -> User:
        if draft.role is UserRole.ADMIN:
            if actor_id is None:
                raise ForbiddenError("Only administrators may create administrator accounts")
            actor = await self._require(actor_id)
            authorize(Action.CREATE_ADMIN, Actor.from_user(actor))

        email = normalize_email(draft.email)
        if await self.find_by_email(email) is not None:
            raise ConflictError("Email already in use")

        user_id = str(uuid.uuid4())
        now = self._clock.now()
        password_hash = hash_password(draft.password)
        token, token_expires = self._new_token(now)

        async def write(blob: Optional[StoredBlob]) -> User:
            user = User(
                id=user_id,
                name=draft.name,
                email=email,
                password_hash=password_hash,
                phone=draft.phone,
                role=draft.role,
                is_active=True,
                is_email_validated=False,
                created_at=now,
                updated_at=now,
                image_url=blob.url if blob else None,
                image_key=blob.key if blob else None,
                email_validation_token=token,
                email_validation_token_expires=token_expires,
            )
            with storage_errors("creating user"):
                await self._store.put(USERS, user.to_item(), if_not_exists=True)
            return user

        user = await self._assets.create(upload, user_id, write)
        logger.info("User %s created with role %s", user.id, user.role.value)
        await self._hooks.committed(UserCreated(user))
        return user

    async def get(self, user_id: str, actor_id: str) -> User:
        actor = await self._require(actor_id)
        authorize(Action.READ_USER, Actor.from_user(actor), owner_id=user_id)
        if actor.id == user_id:
            return actor
        return await self._require(user_id)

    async def update(
        self,
        user_id: str,
        patch: UserPatch,
        actor_id: str,
        upload: Optional[Upload] = None,
    ) -> User:
        actor = await self._require(actor_id)
        authorize(Action.UPDATE_USER, Actor.from_user(actor), owner_id=user_id)
        user = actor if actor.id == user_id else await self._require(user_id)

        changes: Dict[str, Any] = {}
        if patch.name is not None and patch.name != user.name:
            changes["name"] = patch.name
        if patch.phone is not None and patch.phone != user.phone:
            changes["phone"] = patch.phone

        email_changed = False
        if patch.email is not None:
            email = normalize_email(patch.email)
            if email != user.email:
                if await self.find_by_email(email) is not None:
                    raise ConflictError("Email already in use")
                changes["email"] = email
                changes["is_email_validated"] = False
                token, token_expires = self._new_token(self._clock.now())
                changes["email_validation_token"] = token
                changes["email_validation_token_expires"] = serialize_datetime(token_expires)
                email_changed = True

        if patch.password:
            changes["password_hash"] = hash_password(patch.password)

        if not changes and upload is None:
            return user

        async def write(blob: Optional[StoredBlob]) -> User:
            updates = dict(changes)
            if blob is not None:
                updates["image_url"] = blob.url
                updates["image_key"] = blob.key
            if not updates:
                return user
            updates["updated_at"] = serialize_datetime(self._clock.now())
            with storage_errors("updating user"):
                item = await self._store.update(USERS, {"id": user.id}, updates)
            return User.from_item(item)

        updated = await self._assets.replace(upload, user.id, user.image_key, write)
        if email_changed:
            await self._hooks.committed(UserEmailChanged(updated))
        return updated

    async def deactivate(self, user_id: str, actor_id: str) -> User:
        user = await self._require(user_id)
        if not user.is_active:
            raise BadRequestError("User is already inactive")

        actor = user if actor_id == user_id else await self._require(actor_id)
        authorize(Action.DELETE_USER, Actor.from_user(actor), owner_id=user.id)

        changes = {"is_active": False, "updated_at": serialize_datetime(self._clock.now())}
        with storage_errors("deactivating user"):
            item = await self._store.update(USERS, {"id": user.id}, changes)
        deactivated = User.from_item(item)
        logger.info("User %s deactivated by %s", user.id, actor.id)
        await self._hooks.committed(UserDeactivated(deactivated))
        return deactivated

    async def list(
        self,
        filters: Optional[UserFilters],
        actor_id: str,
        *,
        limit: int = DEFAULT_LIMIT,
        cursor: Optional[str] = None,
    ) -> Page[User]:
        actor = await self._require(actor_id)
        authorize(Action.LIST_USERS, Actor.from_user(actor))

        filters = filters or UserFilters()
        plan = self._planner.plan(
            [
                Equals("role", filters.role) if filters.role is not None else None,
                Contains("name", filters.name) if filters.name else None,
                Contains("email", normalize_email(filters.email)) if filters.email else None,
                Equals("is_active", True),
            ],
            limit=limit,
            cursor=cursor,
        )
        with storage_errors("fetching users"):
            result = await execute(self._store, USERS, plan)
        users = [User.from_item(item) for item in result.items]
        return Page(items=users, total=result.count, cursor=self._codec.encode(result.last_key))

    async def validate_email(self, token: str) -> User:
        user = await self._find_one("email_validation_token", token) if token else None
        if user is None:
            raise BadRequestError("Invalid email validation token")
        if user.is_email_validated:
            return user

        expires = user.email_validation_token_expires
        if expires is None or expires < self._clock.now():
            raise BadRequestError("Email validation token has expired")

        changes = {
            "is_email_validated": True,
            "email_validation_token": None,
            "email_validation_token_expires": None,
            "updated_at": serialize_datetime(self._clock.now()),
        }
        with storage_errors("validating email"):
            item = await self._store.update(USERS, {"id": user.id}, changes)
        logger.info("Email validated for user %s", user.id)
        return User.from_item(item)


__all__ = [
    "DEFAULT_EMAIL_TOKEN_TTL",
    "PROFILE_IMAGE_PREFIX",
    "NewUser",
    "UserFilters",
    "UserLifecycle",
    "UserPatch",
    "hash_password",
    "normalize_email",
    "verify_password",
]
