from __future__ import annotations

import asyncio

from ..contracts import DelayStep, WorkflowExecutionContext
from .base import BaseStepHandler


class DelayStepHandler(BaseStepHandler):
    """Sleep for ``duration`` milliseconds; produces no output."""

    async def execute(self, step: DelayStep, context: WorkflowExecutionContext) -> None:
        await asyncio.sleep(step.duration / 1000)
        return None
