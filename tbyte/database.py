"""Pooled relational persistence for users."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.schema import CreateTable

from .config import (
    CONNECT_TIMEOUT_SECONDS,
    POOL_ACQUIRE_TIMEOUT_SECONDS,
    POOL_MAX_CONNECTIONS,
    POOL_RECYCLE_SECONDS,
)
from .models import User

logger = logging.getLogger("tbyte.database")

metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(100), nullable=False),
    Column("email", String(100), unique=True, nullable=False),
    Column("created_at", DateTime, server_default=func.now()),
)

SEED_USERS: tuple[Dict[str, str], ...] = (
    {"name": "John Doe", "email": "john@tbyte.com"},
    {"name": "Jane Smith", "email": "jane@tbyte.com"},
    {"name": "Bob Wilson", "email": "bob@tbyte.com"},
)

_CONFLICT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class StoreError(RuntimeError):
    """Raised when a statement against the relational store fails."""


def _describe(exc: SQLAlchemyError) -> str:
    original = getattr(exc, "orig", None)
    if original is not None:
        text = str(original).strip()
        if text:
            return text
    return str(exc)


@contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise StoreError(_describe(exc)) from exc


def _is_memory_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def _engine_options(url: URL) -> Dict[str, Any]:
    backend = url.get_backend_name()
    if _is_memory_sqlite(url):
        # Every checkout must see the same in-memory database.
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}

    options: Dict[str, Any] = {
        "pool_size": POOL_MAX_CONNECTIONS,
        "max_overflow": 0,
        "pool_timeout": POOL_ACQUIRE_TIMEOUT_SECONDS,
        "pool_recycle": POOL_RECYCLE_SECONDS,
    }
    if backend == "postgresql":
        options["connect_args"] = {"connect_timeout": CONNECT_TIMEOUT_SECONDS}
    elif backend == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
    return options


def _row_to_user(row: Mapping[str, Any]) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        created_at=row["created_at"],
    )


class Database:
    """Process-wide handle on the connection pool.

    Each public method borrows one pooled connection for a single statement
    and returns it before the method exits. Failures surface as
    :class:`StoreError`.
    """

    def __init__(self, url: URL | str, *, engine: Optional[Engine] = None) -> None:
        self._url = make_url(url) if isinstance(url, str) else url
        self._engine = engine if engine is not None else create_engine(
            self._url, **_engine_options(self._url)
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    def describe(self) -> str:
        """Return the store URL with the password masked, for logging."""

        return self._url.render_as_string(hide_password=True)

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def create_schema(self) -> None:
        """Create the ``users`` table if it does not already exist."""

        statement = CreateTable(users_table, if_not_exists=True)
        with _store_errors(), self._engine.begin() as conn:
            conn.execute(statement)

    def seed_users(self, rows: Iterable[Mapping[str, str]] = SEED_USERS) -> None:
        """Insert sample users, skipping any whose email is already present."""

        values = [dict(row) for row in rows]
        if not values:
            return

        insert_factory = _CONFLICT_INSERTS.get(self.dialect_name)
        if insert_factory is None:
            raise StoreError(f"Seeding is not supported for the {self.dialect_name!r} dialect")

        statement = (
            insert_factory(users_table)
            .values(values)
            .on_conflict_do_nothing(index_elements=[users_table.c.email])
        )
        with _store_errors(), self._engine.begin() as conn:
            conn.execute(statement)

    def initialize(self) -> None:
        """Create the schema and insert the seed rows."""

        self.create_schema()
        self.seed_users()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def list_users(self) -> List[User]:
        """Return every user, most recently created first."""

        statement = select(users_table).order_by(
            users_table.c.created_at.desc(),
            users_table.c.id.desc(),
        )
        with _store_errors(), self._engine.connect() as conn:
            rows = conn.execute(statement).mappings().all()
        return [_row_to_user(row) for row in rows]

    def create_user(self, name: Any, email: Any) -> User:
        """Insert a user and return the stored row.

        Values are bound exactly as given; the store enforces the NOT NULL
        and UNIQUE constraints.
        """

        statement = (
            users_table.insert()
            .values(name=name, email=email)
            .returning(*users_table.c)
        )
        with _store_errors(), self._engine.begin() as conn:
            row = conn.execute(statement).mappings().one()
        return _row_to_user(row)

    def count_users(self) -> int:
        statement = select(func.count()).select_from(users_table)
        with _store_errors(), self._engine.connect() as conn:
            return int(conn.execute(statement).scalar_one())

    def server_version(self) -> str:
        """Return the version banner reported by the store."""

        if self.dialect_name == "sqlite":
            statement = select(func.sqlite_version())
        else:
            statement = select(func.version())
        with _store_errors(), self._engine.connect() as conn:
            version = conn.execute(statement).scalar_one()
        if self.dialect_name == "sqlite":
            return f"SQLite {version}"
        return str(version)

    def dispose(self) -> None:
        """Close pooled connections; checked-out connections close on return."""

        logger.info("Closing connection pool for %s", self.describe())
        self._engine.dispose()


__all__ = ["Database", "SEED_USERS", "StoreError", "metadata", "users_table"]
