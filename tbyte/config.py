"""Environment-driven configuration for the TByte backend."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from sqlalchemy.engine import URL, make_url

SERVICE_NAME = "tbyte-backend"
SERVICE_VERSION = "1.0.0"

# Pool sizing is fixed in this version and not read from the environment.
POOL_MAX_CONNECTIONS = 20
POOL_ACQUIRE_TIMEOUT_SECONDS = 2.0
POOL_RECYCLE_SECONDS = 30
CONNECT_TIMEOUT_SECONDS = 2


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Expected an integer, got {value!r}") from exc


_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")
_LOG_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


def _env_log_level(value: Optional[str], default: str = "INFO") -> str:
    if value is None or not value.strip():
        return default
    level = value.strip().upper()
    level = _LOG_LEVEL_ALIASES.get(level, level)
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unknown log level {value!r}; expected one of {', '.join(_LOG_LEVELS)}")
    return level


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the API process."""

    host: str = "0.0.0.0"
    port: int = 3000
    db_host: str = "postgres-service"
    db_port: int = 5432
    db_name: str = "tbyte"
    db_user: str = "postgres"
    db_password: str = "postgres"
    database_url: Optional[str] = None
    environment: str = "development"
    expose_error_details: bool = True
    log_level: str = "INFO"

    def sqlalchemy_url(self) -> URL:
        """Return the store URL, preferring an explicit ``DATABASE_URL``."""

        if self.database_url:
            return make_url(self.database_url)
        return URL.create(
            "postgresql+psycopg2",
            username=self.db_user,
            password=self.db_password,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from environment variables."""

    env = os.environ if environ is None else environ
    environment = env.get("APP_ENV") or env.get("NODE_ENV") or "development"
    return Settings(
        host=env.get("HOST", "0.0.0.0").strip() or "0.0.0.0",
        port=_env_int(env.get("PORT"), 3000),
        db_host=env.get("DB_HOST") or "postgres-service",
        db_port=_env_int(env.get("DB_PORT"), 5432),
        db_name=env.get("DB_NAME") or "tbyte",
        db_user=env.get("DB_USER") or "postgres",
        db_password=env.get("DB_PASSWORD") or "postgres",
        database_url=env.get("DATABASE_URL") or None,
        environment=environment,
        expose_error_details=_env_flag(env.get("EXPOSE_ERROR_DETAILS"), True),
        log_level=_env_log_level(env.get("LOG_LEVEL")),
    )


__all__ = [
    "CONNECT_TIMEOUT_SECONDS",
    "POOL_ACQUIRE_TIMEOUT_SECONDS",
    "POOL_MAX_CONNECTIONS",
    "POOL_RECYCLE_SECONDS",
    "SERVICE_NAME",
    "SERVICE_VERSION",
    "Settings",
    "load_settings",
]
