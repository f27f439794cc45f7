"""Stepflow: async workflow execution engine for typed step pipelines."""

from .builder import WorkflowBuilder
from .config import EngineConfig, load_config
from .contracts import (
    ControlFlow,
    RetryPolicy,
    StepType,
    WorkflowDefinition,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowExecutionContext,
    WorkflowExecutionResult,
    WorkflowStatus,
)
from .engine import WorkflowEngine
from .loader import load_workflow, load_workflows
from .persistence import get_repository
from .prompts import AgentPromptCompiler, TemplatePromptCompiler
from .runner import RuntimeConfig, WorkflowRunner

__version__ = "0.1.0"
__all__ = [
    "AgentPromptCompiler",
    "ControlFlow",
    "EngineConfig",
    "RetryPolicy",
    "RuntimeConfig",
    "StepType",
    "TemplatePromptCompiler",
    "WorkflowBuilder",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowEvent",
    "WorkflowEventType",
    "WorkflowExecutionContext",
    "WorkflowExecutionResult",
    "WorkflowRunner",
    "WorkflowStatus",
    "get_repository",
    "load_config",
    "load_workflow",
    "load_workflows",
]
