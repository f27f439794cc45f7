"""Prompt compilers used by the prompt step."""

from __future__ import annotations

from .agent import AgentPromptCompiler
from .base import PromptCompiler, PromptExecutionContext, PromptResult
from .template import TemplatePromptCompiler

__all__ = [
    "AgentPromptCompiler",
    "PromptCompiler",
    "PromptExecutionContext",
    "PromptResult",
    "TemplatePromptCompiler",
]
