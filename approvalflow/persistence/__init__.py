"""Persistence layer for approvalflow engine state."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ApprovalflowConfig, load_config
from .inmemory import InMemoryStateRepository
from .repository import StateRepository
from .sqlite import SQLiteStateRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[ApprovalflowConfig] = None
) -> StateRepository:
    """Factory function to build a state repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``APPROVALFLOW_DATABASE_URL``, or
    from loaded configuration. When no database is configured, an in-memory
    repository is returned. Every call builds a new repository; its lifetime
    belongs to the caller.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("APPROVALFLOW_DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        return InMemoryStateRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteStateRepository(path)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "StateRepository",
    "InMemoryStateRepository",
    "SQLiteStateRepository",
    "get_repository",
]
