"""In-memory prompt templates rendered with ``str.format_map``."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from .base import PromptExecutionContext, PromptResult

logger = logging.getLogger(__name__)


class TemplatePromptCompiler:
    """Render registered templates without calling a model.

    Useful on its own for deterministic text steps and as the rendering stage
    of :class:`~stepflow.prompts.agent.AgentPromptCompiler`.
    """

    def __init__(self, templates: Optional[Mapping[str, str]] = None) -> None:
        self._templates: Dict[str, str] = dict(templates or {})

    def add_template(self, template_id: str, template: str) -> None:
        self._templates[template_id] = template

    def has_template(self, template_id: str) -> bool:
        return template_id in self._templates

    def render(self, template_id: str, variables: Mapping[str, Any]) -> PromptResult:
        template = self._templates.get(template_id)
        if template is None:
            return PromptResult(success=False, error=f"Prompt template not found: {template_id}")
        try:
            content = template.format_map(dict(variables))
        except KeyError as e:
            return PromptResult(
                success=False,
                error=f"Missing variable {e.args[0]!r} for template {template_id}",
            )
        except (IndexError, ValueError, AttributeError) as e:
            return PromptResult(success=False, error=f"Cannot render {template_id}: {e}")
        return PromptResult(
            success=True, content=content, metadata={"template_id": template_id}
        )

    async def compile(
        self,
        template_id: str,
        variables: Mapping[str, Any],
        execution: Optional[PromptExecutionContext] = None,
    ) -> PromptResult:
        result = self.render(template_id, variables)
        if not result.success:
            logger.warning(f"Prompt compilation failed: {result.error}")
        elif execution is not None:
            result.metadata["request_id"] = execution.request_id
        return result
