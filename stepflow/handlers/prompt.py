from __future__ import annotations

from typing import Any, Optional

from ..contracts import PromptStep, WorkflowExecutionContext
from ..errors import PromptCompilerError
from ..prompts import PromptCompiler, PromptExecutionContext
from .base import BaseStepHandler


class PromptStepHandler(BaseStepHandler):
    """Compile a prompt template through the configured compiler.

    Step variables override context variables of the same name. Returns the
    compiled content, or ``None`` when the compiler reports failure.
    """

    def __init__(self, compiler: Optional[PromptCompiler] = None) -> None:
        self.compiler = compiler

    async def execute(self, step: PromptStep, context: WorkflowExecutionContext) -> Any:
        if self.compiler is None:
            raise PromptCompilerError("No prompt compiler configured for prompt steps")

        variables = {**context.variables, **step.variables}
        user_id = context.metadata.get("user_id")
        execution = PromptExecutionContext(
            session_id=context.execution_id,
            request_id=f"{context.execution_id}_{step.id}",
            user_id=str(user_id) if user_id is not None else None,
            model=step.model or context.metadata.get("model"),
        )
        result = await self.compiler.compile(step.prompt_id, variables, execution)
        return result.content if result.success else None
