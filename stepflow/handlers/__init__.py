"""Built-in step handlers, one per step type."""

from __future__ import annotations

from typing import Dict, Optional

import httpx

from ..contracts import StepType
from ..prompts import PromptCompiler
from .api_call import APICallStepHandler
from .base import BaseStepHandler, expression_names
from .condition import ConditionStepHandler
from .custom import CustomStepHandler
from .delay import DelayStepHandler
from .parallel import ChildRunner, ParallelStepHandler
from .prompt import PromptStepHandler
from .transform import TransformStepHandler
from .validate import ValidateStepHandler


def default_handlers(
    run_child: ChildRunner,
    prompt_compiler: Optional[PromptCompiler] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Dict[StepType, BaseStepHandler]:
    """Build the handler set an engine registers at construction."""

    return {
        StepType.PROMPT: PromptStepHandler(prompt_compiler),
        StepType.CONDITION: ConditionStepHandler(),
        StepType.PARALLEL: ParallelStepHandler(run_child),
        StepType.DELAY: DelayStepHandler(),
        StepType.TRANSFORM: TransformStepHandler(),
        StepType.VALIDATE: ValidateStepHandler(),
        StepType.API_CALL: APICallStepHandler(http_client),
        StepType.CUSTOM: CustomStepHandler(),
    }


__all__ = [
    "APICallStepHandler",
    "BaseStepHandler",
    "ChildRunner",
    "ConditionStepHandler",
    "CustomStepHandler",
    "DelayStepHandler",
    "ParallelStepHandler",
    "PromptStepHandler",
    "TransformStepHandler",
    "ValidateStepHandler",
    "default_handlers",
    "expression_names",
]
