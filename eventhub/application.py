"""Service wiring: builds the lifecycles from settings and serves them over HTTP."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from .assets import BlobAssetCoordinator
from .blobs import BlobStore, LocalBlobStore, S3BlobStore
from .clock import Clock, SystemClock
from .config import BlobSettings, Settings, StorageSettings, load_settings, resolve_config_path
from .database import Database, SQLiteRecordStore, resolve_database_path
from .dynamodb import DynamoRecordStore
from .events import EventLifecycle
from .mail import LoggingMailer, Mailer, SMTPMailer
from .notifications import NotificationDispatcher
from .registrations import RegistrationLifecycle
from .security import GatewayAuth
from .signals import CommitHooks
from .storage import RecordStore
from .users import UserLifecycle

logger = logging.getLogger("eventhub.application")


@dataclass
class Services:
    """The lifecycles of one running service and the backends they share."""

    users: UserLifecycle
    events: EventLifecycle
    registrations: RegistrationLifecycle
    hooks: CommitHooks
    store: RecordStore
    blobs: BlobStore


def build_store(settings: StorageSettings, *, initialize: bool = True) -> RecordStore:
    if settings.backend == "dynamodb":
        return DynamoRecordStore(
            region=settings.region,
            endpoint_url=settings.endpoint_url,
            table_names=settings.table_names,
        )

    db_path = resolve_database_path(str(settings.database_path) if settings.database_path else None)
    database = Database(db_path)
    if initialize:
        database.initialize()
    return SQLiteRecordStore(database)


def build_blob_store(settings: BlobSettings) -> BlobStore:
    if settings.backend == "s3":
        return S3BlobStore(
            settings.bucket or "",
            settings.region or "us-east-1",
            endpoint_url=settings.endpoint_url,
        )
    return LocalBlobStore(settings.directory, settings.base_url)


def build_mailer(settings: Settings) -> Mailer:
    if settings.mail is None:
        logger.warning("SMTP is not configured; notification emails will only be logged")
        return LoggingMailer()
    return SMTPMailer(settings.mail)


def build_services(
    settings: Settings,
    *,
    store: Optional[RecordStore] = None,
    blobs: Optional[BlobStore] = None,
    mailer: Optional[Mailer] = None,
    clock: Optional[Clock] = None,
) -> Services:
    """Assemble the lifecycles; explicit collaborators override the configured ones."""

    store = store or build_store(settings.storage)
    blobs = blobs or build_blob_store(settings.blobs)
    mailer = mailer or build_mailer(settings)
    clock = clock or SystemClock()
    hooks = CommitHooks()

    users = UserLifecycle(
        store,
        BlobAssetCoordinator(blobs, settings.blobs.profile_prefix),
        hooks,
        clock=clock,
        email_token_ttl=timedelta(hours=settings.email_token_ttl_hours),
    )
    events = EventLifecycle(
        store,
        users,
        BlobAssetCoordinator(blobs, settings.blobs.event_prefix),
        hooks,
        clock=clock,
    )
    registrations = RegistrationLifecycle(store, users, events, hooks, clock=clock)
    hooks.register(NotificationDispatcher(mailer, users, settings.api_url))

    return Services(
        users=users,
        events=events,
        registrations=registrations,
        hooks=hooks,
        store=store,
        blobs=blobs,
    )


def create_application(*, settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Create the ASGI application from configuration."""

    from .api import create_app

    if settings is None:
        settings = load_settings(resolve_config_path(os.getenv("EVENTHUB_CONFIG")))
    if services is None:
        services = build_services(settings)
    if not settings.gateway_tokens:
        raise ValueError("At least one gateway token must be configured (EVENTHUB_GATEWAY_TOKENS)")

    app = create_app(services, auth=GatewayAuth(settings.gateway_tokens))

    blob_settings = settings.blobs
    if isinstance(services.blobs, LocalBlobStore) and blob_settings.base_url.startswith("/"):
        directory: Path = services.blobs.root
        directory.mkdir(parents=True, exist_ok=True)
        app.mount(blob_settings.base_url, StaticFiles(directory=str(directory)), name="media")

    return app


__all__ = [
    "Services",
    "build_blob_store",
    "build_mailer",
    "build_services",
    "build_store",
    "create_application",
]
