"""Shared behaviour for the built-in step handlers."""

from __future__ import annotations

import logging
from typing import Any, Dict

from ..contracts import WorkflowExecutionContext, WorkflowStep
from ..errors import ExpressionError
from ..expressions import evaluate

logger = logging.getLogger(__name__)


def expression_names(context: WorkflowExecutionContext, **extra: Any) -> Dict[str, Any]:
    """Names visible to step expressions.

    Every variable is exposed directly, then ``variables``, ``inputs``,
    ``outputs`` and a ``context`` mapping shadow variables of the same name.
    """
    names: Dict[str, Any] = dict(context.variables)
    names.update(
        variables=context.variables,
        inputs=context.inputs,
        outputs=context.outputs,
        context={
            "workflow_id": context.workflow_id,
            "execution_id": context.execution_id,
            "variables": context.variables,
            "inputs": context.inputs,
            "outputs": context.outputs,
            "metadata": context.metadata,
            "branches": context.branches,
        },
    )
    names.update(extra)
    return names


class BaseStepHandler:
    """Base class for handlers; subclasses implement :meth:`execute`."""

    async def execute(self, step: WorkflowStep, context: WorkflowExecutionContext) -> Any:
        raise NotImplementedError

    def validate(self, step: WorkflowStep, input: Any) -> bool:
        """Check ``step.input_validation`` against the step's bound input.

        Steps without an ``input_validation`` expression always pass; an
        expression that cannot be evaluated counts as a rejection.
        """
        if step.input_validation is None:
            return True
        try:
            return bool(evaluate(step.input_validation, {"input": input}))
        except ExpressionError as e:
            logger.warning(f"Input validation for step {step.id} errored: {e}")
            return False
