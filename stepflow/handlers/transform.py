from __future__ import annotations

from typing import Any

from ..contracts import TransformStep, WorkflowExecutionContext
from ..expressions import evaluate
from ..utils import get_nested_value, nest_value
from .base import BaseStepHandler, expression_names


def resolve_input(step: Any, context: WorkflowExecutionContext) -> Any:
    """Value at ``step.input_path`` in the variables, else the step's own binding."""
    if getattr(step, "input_path", None):
        return get_nested_value(context.variables, step.input_path)
    return context.bound_input(step.id)


class TransformStepHandler(BaseStepHandler):
    async def execute(self, step: TransformStep, context: WorkflowExecutionContext) -> Any:
        value = resolve_input(step, context)
        result = evaluate(step.transform, expression_names(context, input=value))
        if step.output_path:
            return nest_value(step.output_path, result)
        return result
