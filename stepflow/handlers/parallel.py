from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List

from ..contracts import ParallelStep, WorkflowExecutionContext
from .base import BaseStepHandler

ChildRunner = Callable[[str, WorkflowExecutionContext], Awaitable[Any]]


async def _drain(tasks: List["asyncio.Future[Any]"]) -> None:
    for task in tasks:
        if not task.done():
            task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class ParallelStepHandler(BaseStepHandler):
    """Fan out to the listed step ids through ``run_child``.

    With ``wait_for_all`` the output is a list of ``{"step_id", "output"}``
    entries in declared order and the first child error fails the step.
    Otherwise the first child to finish wins and the rest are cancelled.
    """

    def __init__(self, run_child: ChildRunner) -> None:
        self._run_child = run_child

    async def execute(self, step: ParallelStep, context: WorkflowExecutionContext) -> Any:
        if not step.steps:
            return [] if step.wait_for_all else None

        tasks = [
            asyncio.ensure_future(self._run_child(child_id, context))
            for child_id in step.steps
        ]
        try:
            if step.wait_for_all:
                outputs = await asyncio.gather(*tasks)
                return [
                    {"step_id": child_id, "output": output}
                    for child_id, output in zip(step.steps, outputs)
                ]

            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            index, winner = next((i, t) for i, t in enumerate(tasks) if t in done)
            return {"step_id": step.steps[index], "output": winner.result()}
        finally:
            await _drain(tasks)
