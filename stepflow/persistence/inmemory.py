"""In-memory implementation of the execution repository."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from ..constants import DEFAULT_RETENTION_HOURS
from .models import ExecutionRecord
from .repository import ExecutionRepository


class InMemoryExecutionRepository(ExecutionRepository):
    """Keep execution history in local memory.

    Records older than ``retention_hours`` are dropped whenever a new record
    is saved or :meth:`purge_expired` is called. Data is not persisted across
    process restarts.
    """

    def __init__(self, retention_hours: float = DEFAULT_RETENTION_HOURS) -> None:
        self.retention = timedelta(hours=retention_hours)
        self._records: Dict[str, ExecutionRecord] = {}

    # ------------------------------------------------------------------
    async def save_execution(self, record: ExecutionRecord) -> None:
        await self.purge_expired()
        self._records[record.execution_id] = record

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        return self._records.get(execution_id)

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        return [
            r
            for r in self._records.values()
            if workflow_id is None or r.workflow_id == workflow_id
        ]

    async def purge_expired(self) -> int:
        cutoff = datetime.now(timezone.utc) - self.retention
        expired = [k for k, r in self._records.items() if r.finished_at < cutoff]
        for key in expired:
            del self._records[key]
        return len(expired)
