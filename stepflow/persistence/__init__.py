"""Execution history persistence for stepflow engines."""

from __future__ import annotations

from typing import Optional

from ..config import EngineConfig
from .inmemory import InMemoryExecutionRepository
from .models import ExecutionRecord
from .repository import ExecutionRepository


def get_repository(config: Optional[EngineConfig] = None) -> ExecutionRepository | None:
    """Return the history repository selected by ``config``.

    ``None`` when persistence is disabled; only in-memory storage is built in.
    """

    config = config or EngineConfig()
    persistence = config.persistence
    if not persistence.enabled:
        return None
    if persistence.storage == "memory":
        return InMemoryExecutionRepository(retention_hours=persistence.retention)
    raise ValueError(f"Unsupported storage backend: {persistence.storage}")


__all__ = [
    "ExecutionRecord",
    "ExecutionRepository",
    "InMemoryExecutionRepository",
    "get_repository",
]
