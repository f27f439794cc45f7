"""Repository abstraction for execution history."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import ExecutionRecord


class ExecutionRepository(Protocol):
    """Protocol for execution history backends."""

    async def save_execution(self, record: ExecutionRecord) -> None:
        """Persist a finished execution."""

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        """Retrieve one execution by id."""

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        """Return stored executions, optionally for one workflow."""

    async def purge_expired(self) -> int:
        """Drop records past retention; return how many were removed."""
