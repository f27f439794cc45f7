"""Prompt compiler interface consumed by the prompt step."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol

from pydantic import BaseModel, Field


class PromptExecutionContext(BaseModel):
    """Identifies the run a prompt is compiled for."""

    session_id: str
    request_id: str
    user_id: Optional[str] = None
    model: Optional[Dict[str, str]] = None


class PromptResult(BaseModel):
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PromptCompiler(Protocol):
    """Compiles a template with variables and produces model text."""

    async def compile(
        self,
        template_id: str,
        variables: Mapping[str, Any],
        execution: Optional[PromptExecutionContext] = None,
    ) -> PromptResult:
        """Return the compiled (and possibly model-generated) content."""
