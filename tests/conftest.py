from __future__ import annotations

from pathlib import Path

import pytest

from tbyte.config import Settings
from tbyte.database import Database


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'tbyte.sqlite3'}"


@pytest.fixture()
def settings(database_url: str) -> Settings:
    return Settings(database_url=database_url, environment="test")


@pytest.fixture()
def database(database_url: str):
    db = Database(database_url)
    yield db
    db.dispose()
