"""Data models for stored execution history."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..contracts import WorkflowExecutionResult, WorkflowStatus


class ExecutionRecord(BaseModel):
    """A finished execution as kept by a repository."""

    execution_id: str
    workflow_id: str
    status: WorkflowStatus
    inputs: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    result: WorkflowExecutionResult
