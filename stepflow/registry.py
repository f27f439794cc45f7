"""Lookup table from step type to the handler that executes it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

from .contracts import StepType
from .errors import DuplicateHandlerError

if TYPE_CHECKING:
    from .contracts import WorkflowExecutionContext, WorkflowStep

logger = logging.getLogger(__name__)


@runtime_checkable
class StepHandler(Protocol):
    """Executes steps of one type.

    Handlers may additionally define ``validate(step, input) -> bool``; the
    step executor calls it before ``execute`` when present.
    """

    async def execute(
        self, step: "WorkflowStep", context: "WorkflowExecutionContext"
    ) -> Any:
        """Run ``step`` and return its output."""


class StepHandlerRegistry:
    """Maps each :class:`StepType` to exactly one handler.

    The registry knows nothing about step payloads. Registering a type twice
    is rejected unless ``replace=True`` is passed.
    """

    def __init__(self) -> None:
        self._handlers: Dict[StepType, StepHandler] = {}

    def register(
        self, step_type: StepType, handler: StepHandler, replace: bool = False
    ) -> None:
        step_type = StepType(step_type)
        if not callable(getattr(handler, "execute", None)):
            raise TypeError(f"Handler for {step_type.value} must define execute()")
        if step_type in self._handlers and not replace:
            raise DuplicateHandlerError(step_type.value)
        self._handlers[step_type] = handler
        logger.debug(f"Registered handler {type(handler).__name__} for {step_type.value}")

    def unregister(self, step_type: StepType) -> bool:
        return self._handlers.pop(StepType(step_type), None) is not None

    def get(self, step_type: Any) -> Optional[StepHandler]:
        """Return the handler for ``step_type`` or ``None``; never raises."""
        try:
            return self._handlers.get(StepType(step_type))
        except ValueError:
            return None

    def types(self) -> List[StepType]:
        return list(self._handlers)

    def __contains__(self, step_type: object) -> bool:
        return self.get(step_type) is not None

    def __len__(self) -> int:
        return len(self._handlers)
