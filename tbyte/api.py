"""FastAPI application exposing the user and statistics endpoints."""
from __future__ import annotations

import asyncio
import gc
import json
import logging
import os
import resource
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import anyio
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import SERVICE_NAME, SERVICE_VERSION, Settings, load_settings
from .database import Database, StoreError
from .models import User
from .schema import SchemaStatus, initialize_schema

logger = logging.getLogger("tbyte.api")

_MODULE_LOADED = time.monotonic()

GENERIC_ERROR_MESSAGE = "An internal error occurred"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "created_at": user.created_at,
    }


def _current_rss() -> Optional[int]:
    try:
        with open("/proc/self/statm", "r", encoding="ascii") as handle:
            resident_pages = int(handle.read().split()[1])
    except (OSError, ValueError, IndexError):
        return None
    return resident_pages * os.sysconf("SC_PAGE_SIZE")


def memory_usage() -> Dict[str, Any]:
    """Return memory figures for the current process, in bytes."""

    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    if sys.platform != "darwin":
        # Linux reports kilobytes, macOS reports bytes.
        max_rss *= 1024
    return {
        "rss": _current_rss(),
        "maxRss": max_rss,
        "gcCounts": list(gc.get_count()),
    }


def _failure(status_code: int, error: str, message: Optional[str] = None) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": error}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


async def _read_json_body(request: Request) -> Dict[str, Any]:
    """Parse a JSON object body; non-JSON requests yield an empty mapping.

    Malformed JSON raises ``ValueError``, which reaches the generic handler.
    """

    content_type = request.headers.get("content-type", "")
    if "json" not in content_type.lower():
        return {}
    raw = await request.body()
    if not raw.strip():
        return {}
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        return {}
    return payload


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
    initialize_database: bool = True,
    schema_status: SchemaStatus | None = None,
    started_at: float | None = None,
) -> FastAPI:
    """Build the API application around a single pooled ``database``.

    ``started_at`` is the process start as a ``time.monotonic()`` reading;
    uptime falls back to the moment this module was imported.
    """

    if settings is None:
        settings = load_settings()
    if database is None:
        database = Database(settings.sqlalchemy_url())
    if schema_status is None:
        schema_status = SchemaStatus()
    if started_at is None:
        started_at = _MODULE_LOADED

    def store_failure(label: str, exc: StoreError) -> JSONResponse:
        message = str(exc) if settings.expose_error_details else GENERIC_ERROR_MESSAGE
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, label, message)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_task: Optional[asyncio.Task] = None
        if initialize_database:
            # Not awaited: requests are served while the schema is prepared.
            init_task = asyncio.create_task(
                anyio.to_thread.run_sync(initialize_schema, database, schema_status)
            )
        app.state.schema_task = init_task
        try:
            yield
        finally:
            if init_task is not None and not init_task.done():
                await init_task
            logger.info("Shutting down gracefully; draining connection pool")
            await anyio.to_thread.run_sync(database.dispose)

    app = FastAPI(
        title="TByte Backend API",
        version=SERVICE_VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.database = database
    app.state.settings = settings
    app.state.schema_status = schema_status

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {
            "status": "healthy",
            "timestamp": _utc_timestamp(),
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
        }

    @app.get("/users")
    async def list_users():
        try:
            users = await anyio.to_thread.run_sync(database.list_users)
        except StoreError as exc:
            logger.error("Database error: %s", exc)
            return store_failure("Database connection failed", exc)

        return {
            "success": True,
            "data": [user_to_dict(user) for user in users],
            "count": len(users),
        }

    @app.post("/users", status_code=status.HTTP_201_CREATED)
    async def create_user(request: Request):
        payload = await _read_json_body(request)
        try:
            user = await anyio.to_thread.run_sync(
                database.create_user,
                payload.get("name"),
                payload.get("email"),
            )
        except StoreError as exc:
            logger.error("Database error: %s", exc)
            return store_failure("Failed to create user", exc)

        logger.info("Created user %s", user.id)
        return {"success": True, "data": user_to_dict(user)}

    @app.get("/stats")
    async def stats():
        try:
            total_users = await anyio.to_thread.run_sync(database.count_users)
            database_version = await anyio.to_thread.run_sync(database.server_version)
        except StoreError as exc:
            logger.error("Stats error: %s", exc)
            return store_failure("Failed to get stats", exc)

        return {
            "success": True,
            "data": {
                "totalUsers": total_users,
                "databaseVersion": database_version,
                "environment": settings.environment,
                "uptime": time.monotonic() - started_at,
                "memory": memory_usage(),
                "timestamp": _utc_timestamp(),
            },
        }

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(_: Request, exc: StarletteHTTPException):
        if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
            return _failure(status.HTTP_404_NOT_FOUND, "Route not found")
        response = _failure(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "Unhandled error while serving %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    return app


__all__ = ["GENERIC_ERROR_MESSAGE", "create_app", "memory_usage", "user_to_dict"]
