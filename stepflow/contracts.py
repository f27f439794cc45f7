"""Core data contracts for stepflow workflows.

Durations, delays and timeouts on definitions are milliseconds. Every model
accepts both snake_case field names and the camelCase names used by JSON
workflow documents (``trueStep``, ``waitForAll``, ``responsePath``...).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .constants import (
    DEFAULT_RETRY_BACKOFF_MULTIPLIER,
    DEFAULT_RETRY_INITIAL_DELAY_MS,
    DEFAULT_RETRY_MAX_DELAY_MS,
    DEFAULT_WORKFLOW_VERSION,
)
from .control import ExecutionControl


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# An expression is either source text for the sandboxed evaluator or a plain
# Python callable supplied by the workflow author.
Expression = Union[str, Callable[..., Any]]


class StepType(str, Enum):
    PROMPT = "prompt"
    CONDITION = "condition"
    PARALLEL = "parallel"
    DELAY = "delay"
    TRANSFORM = "transform"
    VALIDATE = "validate"
    API_CALL = "api_call"
    CUSTOM = "custom"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"


class WorkflowEventType(str, Enum):
    STARTED = "started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_SKIPPED = "step_skipped"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"
    RESUMED = "resumed"


class ControlFlow(str, Enum):
    """How the engine chooses the next step."""

    SEQUENTIAL = "sequential"
    GRAPH = "graph"


class _Contract(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenContract(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class RetryPolicy(_FrozenContract):
    """Exponential backoff settings; delays in milliseconds."""

    max_attempts: int = Field(default=1, ge=1)
    backoff_multiplier: float = Field(default=DEFAULT_RETRY_BACKOFF_MULTIPLIER, gt=0)
    max_delay: float = Field(default=DEFAULT_RETRY_MAX_DELAY_MS, ge=0)
    initial_delay: float = Field(default=DEFAULT_RETRY_INITIAL_DELAY_MS, ge=0)


# ---------------------------------------------------------------------------
# Steps


class BaseStep(_FrozenContract):
    """Fields shared by every step variant."""

    id: str
    name: str
    description: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    retry_count: int = Field(default=0, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    skip_if: Optional[Expression] = None
    input_validation: Optional[Expression] = None
    next: Optional[str] = None


class PromptStep(BaseStep):
    type: Literal["prompt"] = "prompt"
    prompt_id: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    model: Optional[Dict[str, str]] = None


class ConditionStep(BaseStep):
    type: Literal["condition"] = "condition"
    condition: Expression
    true_step: str
    false_step: str


class ParallelStep(BaseStep):
    type: Literal["parallel"] = "parallel"
    steps: List[str] = Field(default_factory=list)
    wait_for_all: bool = True


class DelayStep(BaseStep):
    type: Literal["delay"] = "delay"
    duration: float = Field(ge=0)


class TransformStep(BaseStep):
    type: Literal["transform"] = "transform"
    transform: Expression
    input_path: Optional[str] = None
    output_path: Optional[str] = None


class ValidateStep(BaseStep):
    type: Literal["validate"] = "validate"
    validation: Expression
    input_path: Optional[str] = None
    json_schema: Optional[Dict[str, Any]] = Field(default=None, alias="schema")
    fail_on_invalid: bool = True


HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]


class APICallStep(BaseStep):
    type: Literal["api_call"] = "api_call"
    endpoint: str
    method: HttpMethod = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None
    response_path: Optional[str] = None


class CustomStep(BaseStep):
    type: Literal["custom"] = "custom"
    handler: Union[str, Callable[..., Any]]
    config: Dict[str, Any] = Field(default_factory=dict)


WorkflowStep = Annotated[
    Union[
        PromptStep,
        ConditionStep,
        ParallelStep,
        DelayStep,
        TransformStep,
        ValidateStep,
        APICallStep,
        CustomStep,
    ],
    Field(discriminator="type"),
]


class WorkflowDefinition(_FrozenContract):
    """Immutable workflow template, executed by id once registered."""

    id: str
    name: str
    description: str = ""
    version: str = DEFAULT_WORKFLOW_VERSION
    steps: List[WorkflowStep] = Field(default_factory=list)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)
    retry_policy: Optional[RetryPolicy] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    control_flow: ControlFlow = ControlFlow.SEQUENTIAL
    start_step: Optional[str] = None

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        """Return the first step with ``step_id`` or ``None``."""
        return next((s for s in self.steps if s.id == step_id), None)


# ---------------------------------------------------------------------------
# Execution state


class WorkflowStepExecution(_Contract):
    """Record of one step's run, appended once per executed step."""

    step_id: str
    status: WorkflowStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[float] = None
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    retry_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkflowExecutionContext(_Contract):
    """Mutable run state threaded through one execution."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True
    )

    workflow_id: str
    execution_id: str
    start_time: datetime = Field(default_factory=_utcnow)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.PENDING
    current_step: Optional[str] = None
    step_history: List[WorkflowStepExecution] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    duration: Optional[float] = None
    timeout: Optional[float] = None
    branches: Dict[str, str] = Field(default_factory=dict)
    definition: Optional[WorkflowDefinition] = Field(
        default=None, exclude=True, repr=False
    )
    control: ExecutionControl = Field(
        default_factory=ExecutionControl, exclude=True, repr=False
    )

    def bound_input(self, step_id: str) -> Any:
        """Return the variable bound to ``step_id`` (its own input slot)."""
        return self.variables.get(step_id)


class WorkflowExecutionResult(_Contract):
    """Terminal summary handed back to the caller."""

    success: bool
    status: WorkflowStatus
    outputs: Dict[str, Any] = Field(default_factory=dict)
    duration: float = 0.0
    step_executions: List[WorkflowStepExecution] = Field(default_factory=list)
    error: Optional[str] = None
    execution_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failed(
        cls, error: str, execution_id: Optional[str] = None
    ) -> "WorkflowExecutionResult":
        """Result for runs rejected before any context exists."""
        return cls(
            success=False,
            status=WorkflowStatus.FAILED,
            error=error,
            execution_id=execution_id,
        )


class WorkflowEvent(_Contract):
    type: WorkflowEventType
    workflow_id: str
    execution_id: str
    step_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    data: Any = None
    error: Optional[str] = None


class EngineMetrics(_Contract):
    registered_workflows: int = 0
    registered_handlers: int = 0
    active_executions: int = 0
    event_listeners: int = 0
    executions_started: int = 0
    executions_completed: int = 0
    executions_failed: int = 0
    executions_cancelled: int = 0


__all__ = [
    "APICallStep",
    "BaseStep",
    "ConditionStep",
    "ControlFlow",
    "CustomStep",
    "DelayStep",
    "EngineMetrics",
    "Expression",
    "HttpMethod",
    "ParallelStep",
    "PromptStep",
    "RetryPolicy",
    "StepType",
    "TransformStep",
    "ValidateStep",
    "WorkflowDefinition",
    "WorkflowEvent",
    "WorkflowEventType",
    "WorkflowExecutionContext",
    "WorkflowExecutionResult",
    "WorkflowStatus",
    "WorkflowStep",
    "WorkflowStepExecution",
]
