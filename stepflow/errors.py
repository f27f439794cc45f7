"""Exception types raised by stepflow."""

from __future__ import annotations

from typing import Any, List, Optional

from .constants import STEP_TIMEOUT_MESSAGE


class StepflowError(Exception):
    """Base class for all stepflow errors."""


class WorkflowNotFoundError(StepflowError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class WorkflowBuildError(StepflowError):
    """Raised when a builder cannot produce a definition."""


class WorkflowLoadError(StepflowError):
    """Raised when a definition file cannot be read or validated."""


class TemplateNotFoundError(StepflowError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template not found: {template_id}")
        self.template_id = template_id


class DuplicateHandlerError(StepflowError):
    """Raised when a handler is registered twice without ``replace=True``."""

    def __init__(self, key: str) -> None:
        super().__init__(
            f"A handler is already registered for '{key}'; pass replace=True to override"
        )
        self.key = key


class HandlerNotFoundError(StepflowError):
    def __init__(self, step_type: str) -> None:
        super().__init__(f"No handler registered for step type: {step_type}")
        self.step_type = step_type


class StepNotFoundError(StepflowError):
    def __init__(self, step_id: str, workflow_id: Optional[str] = None) -> None:
        where = f" in workflow {workflow_id}" if workflow_id else ""
        super().__init__(f"Step not found: {step_id}{where}")
        self.step_id = step_id


class StepValidationError(StepflowError):
    """Raised when a handler's ``validate`` rejects the step input."""

    def __init__(self, step_id: str) -> None:
        super().__init__(f"Step validation failed: {step_id}")
        self.step_id = step_id


class StepTimeoutError(StepflowError):
    def __init__(self, timeout_ms: Optional[float] = None) -> None:
        super().__init__(STEP_TIMEOUT_MESSAGE)
        self.timeout_ms = timeout_ms


class ExecutionCancelledError(StepflowError):
    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Workflow execution cancelled: {execution_id}")
        self.execution_id = execution_id


class ExpressionError(StepflowError):
    """Raised when an expression cannot be compiled or evaluated."""


class APICallError(StepflowError):
    """Raised by the API call step for transport errors and non-2xx responses."""

    def __init__(
        self, message: str, status_code: Optional[int] = None, body: Any = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ValidationFailedError(StepflowError):
    """Raised by the validate step when its input does not pass."""

    def __init__(self, step_id: str, errors: List[str]) -> None:
        detail = "; ".join(errors) if errors else "validation expression returned false"
        super().__init__(f"Validation failed for step {step_id}: {detail}")
        self.step_id = step_id
        self.errors = errors


class PromptCompilerError(StepflowError):
    """Raised when a prompt step runs without a usable prompt compiler."""
