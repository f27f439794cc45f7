"""Fluent construction of workflow definitions at runtime."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Type, Union

from pydantic import ValidationError

from .constants import DEFAULT_WORKFLOW_VERSION
from .contracts import (
    APICallStep,
    BaseStep,
    ConditionStep,
    ControlFlow,
    CustomStep,
    DelayStep,
    Expression,
    HttpMethod,
    ParallelStep,
    PromptStep,
    RetryPolicy,
    TransformStep,
    ValidateStep,
    WorkflowDefinition,
)
from .errors import WorkflowBuildError

# options accepted by every add_*_step method
STEP_OPTIONS = frozenset(
    {"description", "timeout", "retry_count", "skip_if", "input_validation", "next", "metadata"}
)


class WorkflowBuilder:
    """Accumulate workflow fields and steps, then ``build()`` a definition.

    Example:
        workflow = (
            WorkflowBuilder("double", "Double a number")
            .add_transform_step("t1", "Double", "input * 2")
            .build()
        )
    """

    def __init__(self, id: str, name: str, description: Optional[str] = None) -> None:
        self._id = id
        self._name = name
        self._description = description or ""
        self._version = DEFAULT_WORKFLOW_VERSION
        self._inputs: Dict[str, Any] = {}
        self._outputs: Dict[str, Any] = {}
        self._metadata: Dict[str, Any] = {}
        self._timeout: Optional[float] = None
        self._retry_policy: Optional[RetryPolicy] = None
        self._control_flow = ControlFlow.SEQUENTIAL
        self._start_step: Optional[str] = None
        self._steps: List[BaseStep] = []

    def version(self, version: str) -> "WorkflowBuilder":
        self._version = version
        return self

    def inputs(self, inputs: Dict[str, Any]) -> "WorkflowBuilder":
        self._inputs.update(inputs)
        return self

    def outputs(self, outputs: Dict[str, Any]) -> "WorkflowBuilder":
        self._outputs.update(outputs)
        return self

    def metadata(self, metadata: Dict[str, Any]) -> "WorkflowBuilder":
        self._metadata.update(metadata)
        return self

    def timeout(self, timeout: float) -> "WorkflowBuilder":
        """Set the workflow-wide step deadline in milliseconds."""
        self._timeout = timeout
        return self

    def retry_policy(self, policy: Union[RetryPolicy, Dict[str, Any]]) -> "WorkflowBuilder":
        self._retry_policy = (
            policy if isinstance(policy, RetryPolicy) else RetryPolicy.model_validate(policy)
        )
        return self

    def control_flow(self, control_flow: ControlFlow) -> "WorkflowBuilder":
        self._control_flow = ControlFlow(control_flow)
        return self

    def start_at(self, step_id: str) -> "WorkflowBuilder":
        """Use graph control flow beginning at ``step_id``."""
        self._control_flow = ControlFlow.GRAPH
        self._start_step = step_id
        return self

    def _add(self, step_cls: Type[BaseStep], options: Dict[str, Any], **fields: Any) -> "WorkflowBuilder":
        unknown = set(options) - STEP_OPTIONS
        if unknown:
            raise WorkflowBuildError(
                f"Unknown option(s) for step {fields['id']}: {', '.join(sorted(unknown))}"
            )
        # drop unset payload fields so model defaults apply
        payload = {k: v for k, v in fields.items() if v is not None}
        payload.update({k: v for k, v in options.items() if v is not None})
        try:
            self._steps.append(step_cls(**payload))
        except ValidationError as e:
            raise WorkflowBuildError(f"Invalid step {fields['id']}: {e}") from e
        return self

    def add_prompt_step(
        self,
        id: str,
        name: str,
        prompt_id: str,
        variables: Optional[Dict[str, Any]] = None,
        model: Optional[Dict[str, str]] = None,
        **options: Any,
    ) -> "WorkflowBuilder":
        return self._add(
            PromptStep, options, id=id, name=name, prompt_id=prompt_id,
            variables=variables, model=model,
        )

    def add_condition_step(
        self,
        id: str,
        name: str,
        condition: Expression,
        true_step: str,
        false_step: str,
        **options: Any,
    ) -> "WorkflowBuilder":
        return self._add(
            ConditionStep, options, id=id, name=name, condition=condition,
            true_step=true_step, false_step=false_step,
        )

    def add_parallel_step(
        self,
        id: str,
        name: str,
        steps: List[str],
        wait_for_all: bool = True,
        **options: Any,
    ) -> "WorkflowBuilder":
        return self._add(
            ParallelStep, options, id=id, name=name, steps=list(steps), wait_for_all=wait_for_all
        )

    def add_delay_step(self, id: str, name: str, duration: float, **options: Any) -> "WorkflowBuilder":
        return self._add(DelayStep, options, id=id, name=name, duration=duration)

    def add_transform_step(
        self,
        id: str,
        name: str,
        transform: Expression,
        input_path: Optional[str] = None,
        output_path: Optional[str] = None,
        **options: Any,
    ) -> "WorkflowBuilder":
        return self._add(
            TransformStep, options, id=id, name=name, transform=transform,
            input_path=input_path, output_path=output_path,
        )

    def add_validation_step(
        self,
        id: str,
        name: str,
        validation: Expression,
        schema: Optional[Dict[str, Any]] = None,
        input_path: Optional[str] = None,
        fail_on_invalid: bool = True,
        **options: Any,
    ) -> "WorkflowBuilder":
        return self._add(
            ValidateStep, options, id=id, name=name, validation=validation,
            json_schema=schema, input_path=input_path, fail_on_invalid=fail_on_invalid,
        )

    def add_api_call_step(
        self,
        id: str,
        name: str,
        endpoint: str,
        method: HttpMethod = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
        response_path: Optional[str] = None,
        **options: Any,
    ) -> "WorkflowBuilder":
        return self._add(
            APICallStep, options, id=id, name=name, endpoint=endpoint, method=method,
            headers=headers, body=body, response_path=response_path,
        )

    def add_custom_step(
        self,
        id: str,
        name: str,
        handler: Union[str, Callable[..., Any]],
        config: Optional[Dict[str, Any]] = None,
        **options: Any,
    ) -> "WorkflowBuilder":
        return self._add(CustomStep, options, id=id, name=name, handler=handler, config=config)

    def build(self) -> WorkflowDefinition:
        if not self._id or not self._name:
            raise WorkflowBuildError("Workflow ID and name are required")
        return WorkflowDefinition(
            id=self._id,
            name=self._name,
            description=self._description,
            version=self._version,
            steps=list(self._steps),
            inputs=dict(self._inputs),
            outputs=dict(self._outputs),
            timeout=self._timeout,
            retry_policy=self._retry_policy,
            metadata=dict(self._metadata),
            control_flow=self._control_flow,
            start_step=self._start_step,
        )
