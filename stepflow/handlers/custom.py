from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..contracts import CustomStep, WorkflowExecutionContext
from ..errors import DuplicateHandlerError, HandlerNotFoundError
from .base import BaseStepHandler

CustomFunction = Callable[[Dict[str, Any], WorkflowExecutionContext], Any]


class CustomStepHandler(BaseStepHandler):
    """Dispatch custom steps to named functions.

    ``step.handler`` is either a registered name or a callable. Functions are
    called as ``fn(config, context)`` and may be sync or async. Sync functions
    run in a worker thread so the step deadline still applies; a thread that
    overruns is abandoned, not interrupted, and must not touch the event loop.
    """

    def __init__(self, functions: Optional[Mapping[str, CustomFunction]] = None) -> None:
        self._functions: Dict[str, CustomFunction] = dict(functions or {})

    def register(self, name: str, func: CustomFunction, replace: bool = False) -> None:
        if name in self._functions and not replace:
            raise DuplicateHandlerError(f"custom:{name}")
        self._functions[name] = func

    def names(self) -> List[str]:
        return list(self._functions)

    async def execute(self, step: CustomStep, context: WorkflowExecutionContext) -> Any:
        func = step.handler if callable(step.handler) else self._functions.get(step.handler)
        if func is None:
            raise HandlerNotFoundError(f"custom:{step.handler}")
        if inspect.iscoroutinefunction(func):
            result = func(dict(step.config), context)
        else:
            result = await asyncio.to_thread(func, dict(step.config), context)
        if inspect.isawaitable(result):
            result = await result
        return result
