"""Command-line interface for the EventHub service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from getpass import getpass
from typing import Sequence

import anyio
import httpx

from eventhub.application import Services, build_services, build_store
from eventhub.config import Settings, load_settings, resolve_config_path
from eventhub.database import SQLiteRecordStore
from eventhub.dynamodb import DynamoRecordStore
from eventhub.errors import EventHubError
from eventhub.models import User, UserRole
from eventhub.schema import USERS
from eventhub.storage import StorageError
from eventhub.users import NewUser

logger = logging.getLogger("eventhub.main")

_DEFAULT_SERVICE_URL = "http://localhost:8000"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="EventHub service utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration file (default: $EVENTHUB_CONFIG or config/eventhub.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the storage tables and indexes")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port for the API (default: 8000)")
    serve_parser.add_argument("--ssl-certfile", default=None, help="Path to the TLS certificate chain in PEM format")
    serve_parser.add_argument("--ssl-keyfile", default=None, help="Path to the TLS private key in PEM format")

    admin_parser = subparsers.add_parser("create-admin", help="Create an administrator account")
    admin_parser.add_argument("--name", required=True, help="Display name of the administrator")
    admin_parser.add_argument("--email", required=True, help="Email address of the administrator")
    admin_parser.add_argument("--phone", default="-", help="Contact phone number")

    check_parser = subparsers.add_parser("check", help="Query the health endpoint of a running service")
    check_parser.add_argument(
        "--service-url",
        default=None,
        help=f"Base URL of the running service (default: {_DEFAULT_SERVICE_URL})",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-admin", "check"}

    global_args: list[str] = []
    if len(args_list) >= 2 and args_list[0] == "--config":
        global_args, args_list = args_list[:2], args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*global_args, *args_list])
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args([*global_args, *args_list])
            args_list = ["serve", *args_list]

    return parser.parse_args([*global_args, *args_list])


def _load_settings(config: str | None) -> Settings:
    return load_settings(resolve_config_path(config or os.getenv("EVENTHUB_CONFIG")))


def _initialise_storage(settings: Settings) -> None:
    store = build_store(settings.storage, initialize=False)
    if isinstance(store, DynamoRecordStore):
        created = store.provision()
        logger.info("Provisioned DynamoDB tables: %s", ", ".join(created) or "none missing")
    elif isinstance(store, SQLiteRecordStore):
        store.database.initialize()
        logger.info("Database initialised at %s", store.database.path)


def _serve(
    *,
    settings: Settings,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from eventhub.application import create_application
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting EventHub API on %s://%s:%s", protocol, host, port)

    try:
        app = create_application(settings=settings)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass("Administrator password (min 12 characters): ")
        if len(password) < 12:
            print("The password needs at least 12 characters.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("The passwords differ, try again.")
            continue
        return password
    return None


async def _bootstrap_admin(services: Services, draft: NewUser) -> User:
    """Create an account and promote it to ADMIN from the local console."""

    existing = await services.users.find_by_email(draft.email)
    if existing is not None:
        raise EventHubError(f"A user with email {existing.email} already exists")

    user = await services.users.create(draft)
    # Written directly: CREATE_ADMIN requires an administrator to already exist.
    await services.store.update(USERS, {"id": user.id}, {"role": UserRole.ADMIN.value})
    promoted = await services.users.find(user.id)
    return promoted or user


def _create_admin(settings: Settings, *, name: str, email: str, phone: str) -> None:
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating administrator.")
        return

    services = build_services(settings)
    draft = NewUser(name=name, email=email, password=password, phone=phone)
    try:
        user = anyio.run(_bootstrap_admin, services, draft)
    except (EventHubError, StorageError) as exc:
        print(f"Failed to create administrator: {exc}")
        return

    print(f"Created administrator {user.id}: {user.name} <{user.email}>")


def _check_service(service_url: str | None) -> int:
    base_url = (service_url or _DEFAULT_SERVICE_URL).rstrip("/")
    try:
        response = httpx.get(f"{base_url}/healthz", timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact EventHub service: {exc}")
        return 1

    if response.status_code != 200:
        print(f"Service responded with {response.status_code}: {response.text.strip()}")
        return 1

    print(f"EventHub at {base_url} is healthy.")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)

    if args.command == "check":
        raise SystemExit(_check_service(args.service_url))

    settings = _load_settings(args.config)

    if args.command == "serve":
        _serve(
            settings=settings,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "init-db":
        _initialise_storage(settings)
        print("Storage initialisation complete.")
    elif args.command == "create-admin":
        _create_admin(settings, name=args.name, email=args.email, phone=args.phone)


if __name__ == "__main__":
    main()
