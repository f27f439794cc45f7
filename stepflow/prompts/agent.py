"""Prompt compiler that sends rendered templates to a pydantic-ai agent."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Union

from pydantic_ai import Agent

from .base import PromptExecutionContext, PromptResult
from .template import TemplatePromptCompiler

logger = logging.getLogger(__name__)


class AgentPromptCompiler:
    """Render a template, run it through ``agent`` and return the model text.

    When ``use_model_hint`` is set, a ``{"provider": ..., "model": ...}`` hint
    carried by the prompt step or the execution metadata overrides the agent's
    model for that call.
    """

    def __init__(
        self,
        agent: Agent,
        templates: Union[TemplatePromptCompiler, Mapping[str, str], None] = None,
        use_model_hint: bool = False,
    ) -> None:
        self.agent = agent
        self.templates = (
            templates
            if isinstance(templates, TemplatePromptCompiler)
            else TemplatePromptCompiler(templates)
        )
        self.use_model_hint = use_model_hint

    async def compile(
        self,
        template_id: str,
        variables: Mapping[str, Any],
        execution: Optional[PromptExecutionContext] = None,
    ) -> PromptResult:
        rendered = self.templates.render(template_id, variables)
        if not rendered.success:
            logger.warning(f"Prompt compilation failed: {rendered.error}")
            return rendered

        run_kwargs: Dict[str, Any] = {}
        if self.use_model_hint and execution and execution.model:
            hint = execution.model
            run_kwargs["model"] = f"{hint.get('provider', 'openai')}:{hint['model']}"

        try:
            result = await self.agent.run(rendered.content, **run_kwargs)
        except Exception as e:
            request_id = execution.request_id if execution else template_id
            logger.error(f"Agent run failed for request_id={request_id}: {e}")
            return PromptResult(success=False, error=str(e))

        output = result.output
        return PromptResult(
            success=True,
            content=output if isinstance(output, str) else str(output),
            metadata={"template_id": template_id, "prompt": rendered.content},
        )
