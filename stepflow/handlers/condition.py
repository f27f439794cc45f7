from __future__ import annotations

import logging
from typing import Any

from ..contracts import ConditionStep, WorkflowExecutionContext
from ..expressions import evaluate
from .base import BaseStepHandler, expression_names

logger = logging.getLogger(__name__)


class ConditionStepHandler(BaseStepHandler):
    """Choose between ``true_step`` and ``false_step``.

    The selected successor id is recorded in ``context.branches`` so that graph
    workflows can follow it; the step's output is whatever is currently bound
    to that successor in the context variables.
    """

    async def execute(self, step: ConditionStep, context: WorkflowExecutionContext) -> Any:
        outcome = evaluate(step.condition, expression_names(context))
        selected = step.true_step if outcome else step.false_step
        context.branches[step.id] = selected
        logger.debug(f"Condition {step.id} evaluated to {bool(outcome)}, selected {selected}")
        return context.variables.get(selected)
