"""Settings for the ezbox storefront, validated with pydantic.

Every field can be set as ``SECTION__FIELD`` (``DB__URL``) or through the
flat names the deployments already use (``DB_URL``, ``DATABASE_URL``,
``S3_BUCKET``...). A ``.env`` file in the working directory is read first
and the process environment overrides it.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _level_or_info(value: object) -> str:
    level = str(value or "").strip().upper()
    return level if level in _LEVEL_NAMES else "INFO"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class DatabaseConfig(_Frozen):
    """Postgres pool."""

    url: str | None = Field(default=None, description="Postgres connection URL")
    pool_maxconn: int = Field(default=10, ge=1, le=100)
    connect_timeout: int = Field(default=5, ge=1, le=60)


class AWSConfig(_Frozen):
    """Retry and timeout defaults for the S3 and SES clients."""

    default_region: str = "us-east-1"
    max_retries: int = Field(default=5, ge=1, le=25)
    timeout: int = Field(default=30, ge=1, le=300)
    connect_timeout: int = Field(default=5, ge=1, le=60)


class APIConfig(_Frozen):
    """HTTP surface: bind address, sessions, admin token and request limits."""

    host: str = "0.0.0.0"
    port: int = Field(default=5000, ge=1, le=65535)
    version: str = "v1"
    debug_errors: bool = False
    log_level: str = "INFO"
    rate_limit_rps: float | None = Field(default=None, gt=0.0)
    rate_limit_burst: float | None = Field(default=None, gt=0.0)
    enforce_schema_gate: bool = True
    bearer_token: str = ""
    secret_key: str = ""
    session_cookie_secure: bool = False
    max_page_size: int = Field(default=500, ge=1, le=10_000)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        return _level_or_info(value)

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        # Only "v<number>" is served; anything else means the default prefix.
        text = str(value or "").strip().lower()
        return text if re.fullmatch(r"v\d+", text) else "v1"


class LoggingSettings(_Frozen):
    level: str = "INFO"
    json_logs: bool = False
    override_root_handlers: bool = False

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        return _level_or_info(value)


class DbMetricsConfig(_Frozen):
    """Per-query timing and the slow-query warning threshold."""

    metrics_enabled: bool = True
    slow_query_threshold_ms: float = Field(default=1000.0, ge=0.0)

    @field_validator("metrics_enabled", mode="before")
    @classmethod
    def _enabled_unless_off(cls, value: object) -> bool:
        # Anything but an explicit "off" spelling keeps metrics on.
        return str(value if value is not None else "").strip().lower() not in {"0", "false", "no", "off"}

    @field_validator("slow_query_threshold_ms", mode="before")
    @classmethod
    def _threshold_or_default(cls, value: object) -> float:
        try:
            return max(0.0, float(str(value).strip()))
        except (TypeError, ValueError):
            return 1000.0


class StorageConfig(_Frozen):
    """Bucket holding product and project images (S3 or an S3-compatible endpoint)."""

    bucket: str = ""
    endpoint_url: str | None = None
    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    public_base_url: str | None = None
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    presign_ttl_seconds: int = Field(default=3600, ge=60, le=7 * 24 * 3600)

    @field_validator("endpoint_url", "region", "public_base_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> str | None:
        return (str(value).strip() or None) if value is not None else None


class EmailConfig(_Frozen):
    """SES sender and the admin inbox list for order and design-request mail."""

    enabled: bool = False
    region: str | None = None
    sender: str = ""
    admin_recipients: list[str] = Field(default_factory=list)

    @field_validator("admin_recipients", mode="before")
    @classmethod
    def _split_recipients(cls, value: object) -> list[str]:
        """Comma list or list of addresses; duplicates compare case-insensitively."""
        if value is None:
            return []
        if isinstance(value, str):
            raw = value.split(",")
        elif isinstance(value, list):
            raw = [str(part) for part in value]
        else:
            raise TypeError("email.admin_recipients must be a list[str] or comma-separated string")
        by_key: dict[str, str] = {}
        for address in (part.strip() for part in raw):
            if address:
                by_key.setdefault(address.lower(), address)
        return list(by_key.values())


class ShopConfig(_Frozen):
    name: str = "ezbox"
    currency_symbol: str = "₮"
    phone_pattern: str = r"^\d{8}$"
    public_base_url: str = ""

    @field_validator("phone_pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"shop.phone_pattern is not a valid regex: {exc}") from exc
        return value


class Settings(_Frozen):
    """All sections; build with :meth:`from_env` or :func:`get_settings`."""

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    aws: AWSConfig = Field(default_factory=AWSConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    db_metrics: DbMetricsConfig = Field(default_factory=DbMetricsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    shop: ShopConfig = Field(default_factory=ShopConfig)

    @classmethod
    def from_env(cls, *, env: Mapping[str, str] | None = None, env_file: str = ".env") -> Settings:
        """Validate settings from ``env_file`` overlaid with ``env`` (default ``os.environ``)."""
        merged = _read_env_file(Path(env_file))
        merged.update((str(k), str(v)) for k, v in (os.environ if env is None else env).items())
        return cls.model_validate(_collect_sections(merged))


# Env names per settings field, most specific first. The ``SECTION__FIELD``
# form always wins; the flat names match what the storefront deployments set.
_ENV_ALIASES: dict[str, dict[str, tuple[str, ...]]] = {
    "db": {
        "url": ("DB__URL", "DB_URL", "DATABASE_URL"),
        "pool_maxconn": ("DB__POOL_MAXCONN", "DB_POOL_MAXCONN"),
        "connect_timeout": ("DB__CONNECT_TIMEOUT", "DB_CONNECT_TIMEOUT"),
    },
    "aws": {
        "default_region": ("AWS__DEFAULT_REGION", "AWS_DEFAULT_REGION", "AWS_REGION"),
        "max_retries": ("AWS__MAX_RETRIES", "AWS_MAX_RETRIES"),
        "timeout": ("AWS__TIMEOUT", "AWS_TIMEOUT"),
        "connect_timeout": ("AWS__CONNECT_TIMEOUT", "AWS_CONNECT_TIMEOUT"),
    },
    "api": {
        "host": ("API__HOST", "API_HOST", "HOST"),
        "port": ("API__PORT", "API_PORT", "PORT"),
        "version": ("API__VERSION", "API_VERSION"),
        "debug_errors": ("API__DEBUG_ERRORS", "API_DEBUG_ERRORS"),
        "log_level": ("API__LOG_LEVEL", "API_LOG_LEVEL"),
        "rate_limit_rps": ("API__RATE_LIMIT_RPS", "API_RATE_LIMIT_RPS"),
        "rate_limit_burst": ("API__RATE_LIMIT_BURST", "API_RATE_LIMIT_BURST"),
        "enforce_schema_gate": ("API__ENFORCE_SCHEMA_GATE", "API_ENFORCE_SCHEMA_GATE"),
        "bearer_token": ("API__BEARER_TOKEN", "API_BEARER_TOKEN"),
        "secret_key": ("API__SECRET_KEY", "API_SECRET_KEY", "SECRET_KEY"),
        "session_cookie_secure": ("API__SESSION_COOKIE_SECURE", "API_SESSION_COOKIE_SECURE"),
        "max_page_size": ("API__MAX_PAGE_SIZE", "API_MAX_PAGE_SIZE"),
    },
    "logging": {
        "level": ("LOGGING__LEVEL", "EZBOX_LOG_LEVEL"),
        "json_logs": ("LOGGING__JSON_LOGS", "EZBOX_LOG_JSON"),
        "override_root_handlers": ("LOGGING__OVERRIDE_ROOT_HANDLERS", "EZBOX_LOG_OVERRIDE"),
    },
    "db_metrics": {
        "metrics_enabled": ("DB_METRICS__ENABLED", "DB_QUERY_METRICS_ENABLED"),
        "slow_query_threshold_ms": ("DB_METRICS__SLOW_QUERY_THRESHOLD_MS", "DB_SLOW_QUERY_THRESHOLD_MS"),
    },
    "storage": {
        "bucket": ("STORAGE__BUCKET", "STORAGE_BUCKET", "S3_BUCKET"),
        "endpoint_url": ("STORAGE__ENDPOINT_URL", "STORAGE_ENDPOINT_URL", "S3_ENDPOINT_URL"),
        "region": ("STORAGE__REGION", "STORAGE_REGION"),
        "access_key_id": ("STORAGE__ACCESS_KEY_ID", "STORAGE_ACCESS_KEY_ID"),
        "secret_access_key": ("STORAGE__SECRET_ACCESS_KEY", "STORAGE_SECRET_ACCESS_KEY"),
        "public_base_url": ("STORAGE__PUBLIC_BASE_URL", "STORAGE_PUBLIC_BASE_URL"),
        "max_upload_bytes": ("STORAGE__MAX_UPLOAD_BYTES", "STORAGE_MAX_UPLOAD_BYTES"),
        "presign_ttl_seconds": ("STORAGE__PRESIGN_TTL_SECONDS", "STORAGE_PRESIGN_TTL_SECONDS"),
    },
    "email": {
        "enabled": ("EMAIL__ENABLED", "EMAIL_ENABLED"),
        "region": ("EMAIL__REGION", "SES_REGION"),
        "sender": ("EMAIL__SENDER", "SES_FROM_EMAIL", "EMAIL_SENDER"),
        "admin_recipients": ("EMAIL__ADMIN_RECIPIENTS", "ADMIN_EMAILS"),
    },
    "shop": {
        "name": ("SHOP__NAME", "SHOP_NAME"),
        "currency_symbol": ("SHOP__CURRENCY_SYMBOL", "SHOP_CURRENCY_SYMBOL"),
        "phone_pattern": ("SHOP__PHONE_PATTERN", "SHOP_PHONE_PATTERN"),
        "public_base_url": ("SHOP__PUBLIC_BASE_URL", "SITE_URL"),
    },
}


def _read_env_file(path: Path) -> dict[str, str]:
    """``KEY=value`` pairs from a dotenv file; a missing file yields nothing.

    Blank lines and ``#`` comments are skipped, a leading ``export`` is
    dropped and one level of matching quotes is stripped from values.
    """
    if not path.is_file():
        return {}

    found: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if stripped.startswith("#") or "=" not in stripped:
            continue
        name, _, value = stripped.partition("=")
        name = name.strip()
        if name.startswith("export "):
            name = name[7:].strip()
        value = value.strip()
        if len(value) > 1 and value[0] in "'\"" and value[-1] == value[0]:
            value = value[1:-1]
        if name:
            found[name] = value
    return found


def _lookup(env: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        text = str(env.get(name, "")).strip()
        if text:
            return text
    return None


def _collect_sections(env: Mapping[str, str]) -> dict[str, dict[str, str]]:
    """Group env values by settings section, leaving unset fields to the model defaults."""
    sections: dict[str, dict[str, str]] = {}
    for section, fields in _ENV_ALIASES.items():
        values: dict[str, str] = {}
        for field_name, names in fields.items():
            found = _lookup(env, names)
            if found is not None:
                values[field_name] = found
        sections[section] = values
    return sections


_lock = Lock()
_cached: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Process-wide settings, built on first use (or again with ``reload=True``)."""
    global _cached
    with _lock:
        if _cached is None or reload:
            _cached = Settings.from_env()
        return _cached


def clear_settings_cache() -> None:
    """Forget the cached settings; tests call this after touching the env."""
    global _cached
    with _lock:
        _cached = None


__all__ = [
    "APIConfig",
    "AWSConfig",
    "DatabaseConfig",
    "DbMetricsConfig",
    "EmailConfig",
    "LoggingSettings",
    "Settings",
    "ShopConfig",
    "StorageConfig",
    "get_settings",
    "clear_settings_cache",
    "ValidationError",
]
