"""TByte demonstration backend: a small REST API over a pooled relational store."""

from __future__ import annotations

from typing import Any

from .database import Database, StoreError


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the FastAPI application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "StoreError",
    "create_app",
]
