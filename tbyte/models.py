"""Domain models for the TByte backend."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class User:
    """Represents a row of the ``users`` table."""

    id: int
    name: str
    email: str
    created_at: Optional[datetime]


__all__ = ["User"]
