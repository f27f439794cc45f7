"""Convenience layer over an engine for dynamically built workflows."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .builder import WorkflowBuilder
from .contracts import (
    EngineMetrics,
    RetryPolicy,
    WorkflowDefinition,
    WorkflowExecutionContext,
    WorkflowExecutionResult,
)
from .engine import WorkflowEngine, generate_execution_id
from .errors import TemplateNotFoundError, WorkflowBuildError, WorkflowNotFoundError
from .utils.retry import compute_backoff, schedule_retry

logger = logging.getLogger(__name__)

WorkflowRef = Union[WorkflowDefinition, str]


class RuntimeConfig(BaseModel):
    """Per-call execution options; never written into the definition."""

    timeout: Optional[float] = Field(default=None, gt=0)
    retry_policy: RetryPolicy = RetryPolicy()
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExecutionRequest(BaseModel):
    """One entry for the parallel and race helpers."""

    workflow: WorkflowRef
    inputs: Dict[str, Any] = Field(default_factory=dict)
    config: RuntimeConfig = RuntimeConfig()


RequestLike = Union[ExecutionRequest, Mapping[str, Any]]


def _simple_prompt(workflow_id: str, template_id: str, parameters: Mapping[str, Any]) -> WorkflowDefinition:
    return (
        WorkflowBuilder(
            workflow_id,
            f"Simple Prompt Workflow ({template_id})",
            "A simple workflow that executes a single prompt",
        )
        .add_prompt_step(
            "prompt-step",
            "Execute Prompt",
            parameters.get("prompt_id") or "default",
            variables=dict(parameters.get("variables") or {}),
        )
        .build()
    )


def _api_chain(workflow_id: str, template_id: str, parameters: Mapping[str, Any]) -> WorkflowDefinition:
    missing = [key for key in ("first_endpoint", "second_endpoint") if not parameters.get(key)]
    if missing:
        raise WorkflowBuildError(f"Template {template_id} requires: {', '.join(missing)}")
    return (
        WorkflowBuilder(
            workflow_id,
            f"API Chain Workflow ({template_id})",
            "A workflow that chains multiple API calls",
        )
        .add_api_call_step("first-api", "First API Call", parameters["first_endpoint"], "GET")
        .add_api_call_step(
            "second-api",
            "Second API Call",
            parameters["second_endpoint"],
            "POST",
            body=dict(parameters.get("body") or {}),
        )
        .build()
    )


TEMPLATES: Dict[str, Callable[[str, str, Mapping[str, Any]], WorkflowDefinition]] = {
    "simple-prompt": _simple_prompt,
    "api-chain": _api_chain,
}


class WorkflowRunner:
    """Runs workflows by id or inline definition on top of a :class:`WorkflowEngine`.

    Workflows registered through the runner are tracked as "dynamic" so they
    can be listed and removed independently of the engine's own registry.
    """

    def __init__(self, engine: Optional[WorkflowEngine] = None) -> None:
        self.engine = engine or WorkflowEngine()
        self._dynamic: Dict[str, WorkflowDefinition] = {}

    def create_builder(self, id: str, name: str, description: Optional[str] = None) -> WorkflowBuilder:
        return WorkflowBuilder(id, name, description)

    def register_workflow(self, workflow: WorkflowDefinition) -> None:
        self._dynamic[workflow.id] = workflow
        self.engine.register_workflow(workflow)

    def create_workflow(self, builder: WorkflowBuilder) -> WorkflowDefinition:
        workflow = builder.build()
        self.register_workflow(workflow)
        return workflow

    def _resolve(self, workflow_or_id: WorkflowRef) -> WorkflowDefinition:
        if isinstance(workflow_or_id, str):
            workflow = self._dynamic.get(workflow_or_id) or self.engine.get_workflow(workflow_or_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_or_id)
            return workflow
        if workflow_or_id.id not in self._dynamic and self.engine.get_workflow(workflow_or_id.id) is None:
            self.engine.register_workflow(workflow_or_id)
        return workflow_or_id

    async def execute_workflow(
        self,
        workflow_or_id: WorkflowRef,
        inputs: Optional[Mapping[str, Any]] = None,
        config: Optional[RuntimeConfig] = None,
        *,
        execution_id: Optional[str] = None,
    ) -> WorkflowExecutionResult:
        """Execute a registered id or an inline definition.

        Raises:
            WorkflowNotFoundError: ``workflow_or_id`` is an unknown id.
        """
        config = config or RuntimeConfig()
        workflow = self._resolve(workflow_or_id)
        return await self.engine.execute_workflow(
            workflow.id,
            inputs,
            execution_id=execution_id,
            timeout=config.timeout,
            metadata=config.metadata,
        )

    async def _settle(
        self, request: ExecutionRequest, execution_id: Optional[str] = None
    ) -> WorkflowExecutionResult:
        try:
            return await self.execute_workflow(
                request.workflow, request.inputs, request.config, execution_id=execution_id
            )
        except Exception as e:
            return WorkflowExecutionResult.failed(str(e) or type(e).__name__, execution_id)

    async def execute_workflow_with_retry(
        self,
        workflow_or_id: WorkflowRef,
        inputs: Optional[Mapping[str, Any]] = None,
        config: Optional[RuntimeConfig] = None,
    ) -> WorkflowExecutionResult:
        """Re-run the whole workflow until it succeeds or attempts run out.

        Waits ``initial_delay * multiplier ** (attempt - 1)`` ms between
        attempts, capped at ``max_delay``. Returns the last result.
        """
        config = config or RuntimeConfig()
        policy = config.retry_policy
        request = ExecutionRequest(workflow=workflow_or_id, inputs=dict(inputs or {}), config=config)

        result: Optional[WorkflowExecutionResult] = None
        for attempt in range(1, policy.max_attempts + 1):
            result = await self._settle(request)
            if result.success:
                return result
            if attempt < policy.max_attempts:
                delay = compute_backoff(
                    attempt,
                    initial_delay=policy.initial_delay,
                    multiplier=policy.backoff_multiplier,
                    max_delay=policy.max_delay,
                )
                logger.info(
                    f"Workflow attempt {attempt}/{policy.max_attempts} failed ({result.error}); "
                    f"retrying in {delay:.0f}ms"
                )
                await schedule_retry(delay)
        return result

    async def execute_workflows_parallel(
        self, requests: Sequence[RequestLike]
    ) -> List[WorkflowExecutionResult]:
        """Run all requests concurrently; one result per request, in order."""
        items = [ExecutionRequest.model_validate(r) for r in requests]
        return list(await asyncio.gather(*(self._settle(item) for item in items)))

    async def execute_workflows_race(
        self, requests: Sequence[RequestLike]
    ) -> WorkflowExecutionResult:
        """Return the first result to arrive and cancel the other runs."""
        items = [ExecutionRequest.model_validate(r) for r in requests]
        if not items:
            raise ValueError("execute_workflows_race requires at least one request")

        ids = [generate_execution_id() for _ in items]
        tasks = [
            asyncio.ensure_future(self.execute_workflow(item.workflow, item.inputs, item.config, execution_id=eid))
            for item, eid in zip(items, ids)
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            winner = next(task for task in tasks if task in done)
        finally:
            for task, eid in zip(tasks, ids):
                if task.done():
                    continue
                if not self.engine.cancel_execution(eid):
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        return winner.result()

    def create_from_template(
        self,
        template_id: str,
        parameters: Optional[Mapping[str, Any]] = None,
        custom_id: Optional[str] = None,
    ) -> WorkflowDefinition:
        """Instantiate a canned workflow shape (not registered).

        Templates: ``simple-prompt`` (``prompt_id``, ``variables``) and
        ``api-chain`` (``first_endpoint``, ``second_endpoint``, ``body``).
        """
        factory = TEMPLATES.get(template_id)
        if factory is None:
            raise TemplateNotFoundError(template_id)
        workflow_id = custom_id or f"template-{template_id}-{int(time.time() * 1000)}"
        return factory(workflow_id, template_id, parameters or {})

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._dynamic.get(workflow_id)

    def list_dynamic_workflows(self) -> List[WorkflowDefinition]:
        return list(self._dynamic.values())

    def remove_workflow(self, workflow_id: str) -> bool:
        return self._dynamic.pop(workflow_id, None) is not None

    def clear_dynamic_workflows(self) -> None:
        self._dynamic.clear()

    def get_execution_status(self, execution_id: str) -> Optional[WorkflowExecutionContext]:
        return self.engine.get_execution_status(execution_id)

    def cancel_execution(self, execution_id: str) -> bool:
        return self.engine.cancel_execution(execution_id)

    def get_metrics(self) -> EngineMetrics:
        return self.engine.get_metrics()
