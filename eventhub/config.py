"""Configuration loading for the EventHub service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .mail import SMTPSettings

_ENV_OVERRIDES: Dict[str, Tuple[str, str]] = {
    "EVENTHUB_STORAGE_BACKEND": ("storage", "backend"),
    "EVENTHUB_DB_PATH": ("storage", "database_path"),
    "EVENTHUB_AWS_REGION": ("storage", "region"),
    "EVENTHUB_DYNAMODB_ENDPOINT": ("storage", "endpoint_url"),
    "EVENTHUB_BLOB_BACKEND": ("blobs", "backend"),
    "EVENTHUB_BLOB_DIR": ("blobs", "directory"),
    "EVENTHUB_BLOB_BASE_URL": ("blobs", "base_url"),
    "EVENTHUB_S3_BUCKET": ("blobs", "bucket"),
    "EVENTHUB_S3_REGION": ("blobs", "region"),
    "EVENTHUB_S3_ENDPOINT": ("blobs", "endpoint_url"),
    "EVENTHUB_SMTP_HOST": ("mail", "host"),
    "EVENTHUB_SMTP_PORT": ("mail", "port"),
    "EVENTHUB_SMTP_USERNAME": ("mail", "username"),
    "EVENTHUB_SMTP_PASSWORD": ("mail", "password"),
    "EVENTHUB_SMTP_USE_TLS": ("mail", "use_tls"),
    "EVENTHUB_SMTP_USE_SSL": ("mail", "use_ssl"),
    "EVENTHUB_MAIL_FROM": ("mail", "sender"),
    "EVENTHUB_API_URL": ("service", "api_url"),
    "EVENTHUB_EMAIL_TOKEN_TTL_HOURS": ("service", "email_token_ttl_hours"),
    "EVENTHUB_GATEWAY_TOKENS": ("service", "gateway_tokens"),
}


def _flag(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _resolve_path(value: Any, base_path: Optional[Path]) -> Path:
    raw = Path(str(value)).expanduser()
    if raw.is_absolute() or base_path is None:
        return raw.resolve(strict=False)
    return (base_path / raw).resolve(strict=False)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class StorageSettings:
    backend: str = "sqlite"
    database_path: Optional[Path] = None
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    table_names: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Optional[Path] = None) -> "StorageSettings":
        backend = str(data.get("backend", "sqlite")).strip().lower()
        if backend not in {"sqlite", "dynamodb"}:
            raise ValueError(f"Unsupported storage backend '{backend}'")
        raw_path = data.get("database_path")
        tables = data.get("table_names") or {}
        if not isinstance(tables, Mapping):
            raise ValueError("storage.table_names must be a mapping")
        return StorageSettings(
            backend=backend,
            database_path=_resolve_path(raw_path, base_path) if raw_path else None,
            region=_optional_str(data.get("region")),
            endpoint_url=_optional_str(data.get("endpoint_url")),
            table_names={str(key): str(value) for key, value in tables.items()},
        )


@dataclass(frozen=True)
class BlobSettings:
    backend: str = "local"
    directory: Path = Path("data/uploads")
    base_url: str = "/media"
    bucket: Optional[str] = None
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    event_prefix: str = "events-images"
    profile_prefix: str = "user-profiles"

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Optional[Path] = None) -> "BlobSettings":
        backend = str(data.get("backend", "local")).strip().lower()
        if backend not in {"local", "s3"}:
            raise ValueError(f"Unsupported blob backend '{backend}'")
        bucket = _optional_str(data.get("bucket"))
        if backend == "s3" and not bucket:
            raise ValueError("blobs.bucket is required when the s3 backend is selected")
        return BlobSettings(
            backend=backend,
            directory=_resolve_path(data.get("directory", "data/uploads"), base_path),
            base_url=str(data.get("base_url", "/media")),
            bucket=bucket,
            region=_optional_str(data.get("region")),
            endpoint_url=_optional_str(data.get("endpoint_url")),
            event_prefix=str(data.get("event_prefix", "events-images")),
            profile_prefix=str(data.get("profile_prefix", "user-profiles")),
        )


def _smtp_from_dict(data: Mapping[str, Any]) -> Optional[SMTPSettings]:
    host = _optional_str(data.get("host"))
    if host is None:
        return None
    return SMTPSettings(
        host=host,
        port=int(data.get("port", 587)),
        username=_optional_str(data.get("username")),
        password=_optional_str(data.get("password")),
        sender=str(data.get("sender", "no-reply@eventhub.local")),
        use_tls=_flag(data.get("use_tls"), True),
        use_ssl=_flag(data.get("use_ssl"), False),
    )


def _tokens(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(str(token).strip() for token in value if str(token).strip())


@dataclass(frozen=True)
class Settings:
    storage: StorageSettings = field(default_factory=StorageSettings)
    blobs: BlobSettings = field(default_factory=BlobSettings)
    mail: Optional[SMTPSettings] = None
    api_url: str = "http://localhost:8000"
    email_token_ttl_hours: int = 24
    gateway_tokens: Tuple[str, ...] = ()

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Optional[Path] = None) -> "Settings":
        service = data.get("service") or {}
        ttl = int(service.get("email_token_ttl_hours", 24))
        if ttl < 1:
            raise ValueError("service.email_token_ttl_hours must be at least 1")
        return Settings(
            storage=StorageSettings.from_dict(data.get("storage") or {}, base_path),
            blobs=BlobSettings.from_dict(data.get("blobs") or {}, base_path),
            mail=_smtp_from_dict(data.get("mail") or {}),
            api_url=str(service.get("api_url", "http://localhost:8000")).rstrip("/"),
            email_token_ttl_hours=ttl,
            gateway_tokens=_tokens(service.get("gateway_tokens")),
        )


def _apply_env_overrides(raw: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    merged = {section: dict(values or {}) for section, values in raw.items() if isinstance(values, Mapping)}
    for variable, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(variable)
        if value is None or value == "":
            continue
        merged.setdefault(section, {})[key] = value
    return merged


def load_settings(config_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Load settings from ``config_path`` (when it exists) and ``EVENTHUB_*`` variables."""

    env = os.environ if env is None else env
    raw: Dict[str, Any] = {}
    base_path: Optional[Path] = None
    if config_path is not None and config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, Mapping):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")
        raw = dict(loaded)
        base_path = config_path.parent
    return Settings.from_dict(_apply_env_overrides(raw, env), base_path)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "eventhub.yaml").resolve(strict=False)


__all__ = [
    "BlobSettings",
    "Settings",
    "StorageSettings",
    "load_settings",
    "resolve_config_path",
]
