"""Best-effort schema bootstrap run when the service starts."""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from .database import Database

logger = logging.getLogger("tbyte.schema")

PENDING = "pending"
READY = "ready"
FAILED = "failed"


class SchemaStatus:
    """Thread-safe record of the schema initializer's outcome."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = PENDING
        self._error: Optional[str] = None
        self._finished_at: Optional[datetime] = None
        self.completed = threading.Event()

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self._error

    @property
    def finished_at(self) -> Optional[datetime]:
        with self._lock:
            return self._finished_at

    @property
    def ready(self) -> bool:
        return self.state == READY

    def mark_ready(self) -> None:
        self._finish(READY, None)

    def mark_failed(self, error: str) -> None:
        self._finish(FAILED, error)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the initializer finished; ``False`` on timeout."""

        return self.completed.wait(timeout)

    def _finish(self, state: str, error: Optional[str]) -> None:
        with self._lock:
            self._state = state
            self._error = error
            self._finished_at = datetime.now(timezone.utc)
        self.completed.set()


def initialize_schema(database: Database, status: Optional[SchemaStatus] = None) -> SchemaStatus:
    """Create the ``users`` table and seed it, never raising.

    Failures are logged and recorded on ``status``; requests that need the
    table will fail later with a store error.
    """

    if status is None:
        status = SchemaStatus()

    try:
        database.initialize()
    except Exception as exc:
        logger.exception("Database initialization failed: %s", exc)
        status.mark_failed(str(exc) or exc.__class__.__name__)
    else:
        logger.info("Database initialized successfully")
        status.mark_ready()
    return status


__all__ = ["FAILED", "PENDING", "READY", "SchemaStatus", "initialize_schema"]
