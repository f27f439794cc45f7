"""Workflow orchestrator: registration, execution, cancellation and events."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .config import EngineConfig
from .contracts import (
    ControlFlow,
    EngineMetrics,
    StepType,
    WorkflowDefinition,
    WorkflowEventType,
    WorkflowExecutionContext,
    WorkflowExecutionResult,
    WorkflowStatus,
    WorkflowStep,
    WorkflowStepExecution,
)
from .control import ExecutionControl
from .errors import ExpressionError, StepflowError, StepNotFoundError
from .events import EventBus, EventListener
from .executor import StepExecutor
from .expressions import evaluate
from .handlers import CustomStepHandler, default_handlers, expression_names
from .handlers.custom import CustomFunction
from .persistence import ExecutionRecord, ExecutionRepository, get_repository
from .prompts import PromptCompiler
from .registry import StepHandler, StepHandlerRegistry

logger = logging.getLogger(__name__)


def generate_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex}"


class WorkflowEngine:
    """Runs registered workflows step by step.

    Engines are plain instances; construct one per host application (or per
    test) and pass it where it is needed. The built-in step handlers are
    registered at construction and can be swapped with
    ``register_step_handler(..., replace=True)``.

    All shared state (registered workflows, handlers and the active-execution
    map) is only touched between await points, so no locking is needed on a
    single event loop.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        prompt_compiler: Optional[PromptCompiler] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        repository: Optional[ExecutionRepository] = None,
        register_defaults: bool = True,
    ) -> None:
        self.config = config or EngineConfig()
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._registry = StepHandlerRegistry()
        self._events = EventBus()
        self._executor = StepExecutor(
            self._registry,
            self._events,
            self.config.step_retry,
            enable_logging=self.config.enable_logging,
        )
        self._executions: Dict[str, WorkflowExecutionContext] = {}
        self._counters: Dict[str, int] = {
            "executions_started": 0,
            "executions_completed": 0,
            "executions_failed": 0,
            "executions_cancelled": 0,
        }
        self._repository = (
            repository if repository is not None else get_repository(self.config)
        )

        if register_defaults:
            handlers = default_handlers(self._run_child, prompt_compiler, http_client)
            for step_type, handler in handlers.items():
                self._registry.register(step_type, handler)

    # ------------------------------------------------------------------
    # Helpers
    def _log(self, level: int, message: str) -> None:
        if self.config.enable_logging:
            logger.log(level, message)

    def _count(self, name: str) -> None:
        if self.config.enable_metrics:
            self._counters[name] += 1

    @property
    def repository(self) -> Optional[ExecutionRepository]:
        return self._repository

    # ------------------------------------------------------------------
    # Registration
    def register_workflow(self, workflow: WorkflowDefinition) -> None:
        """Store ``workflow`` by id, replacing any previous definition."""
        replaced = workflow.id in self._workflows
        self._workflows[workflow.id] = workflow
        self._log(
            logging.INFO,
            f"{'Replaced' if replaced else 'Registered'} workflow: "
            f"{workflow.name} ({workflow.id})",
        )

    def unregister_workflow(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    def list_workflows(self) -> List[WorkflowDefinition]:
        return list(self._workflows.values())

    def register_step_handler(
        self, step_type: StepType, handler: StepHandler, replace: bool = False
    ) -> None:
        self._registry.register(step_type, handler, replace=replace)
        self._log(logging.INFO, f"Registered handler for step type: {StepType(step_type).value}")

    def get_step_handler(self, step_type: StepType) -> Optional[StepHandler]:
        return self._registry.get(step_type)

    def register_custom_handler(
        self, name: str, func: CustomFunction, replace: bool = False
    ) -> None:
        """Make ``func`` available to custom steps as ``handler: name``."""
        handler = self._registry.get(StepType.CUSTOM)
        if not isinstance(handler, CustomStepHandler):
            raise StepflowError(
                "The custom step handler has been replaced; register functions on it directly"
            )
        handler.register(name, func, replace=replace)

    # ------------------------------------------------------------------
    # Events
    def add_event_listener(self, event_type: WorkflowEventType, listener: EventListener) -> None:
        self._events.add_listener(event_type, listener)

    def remove_event_listener(
        self, event_type: WorkflowEventType, listener: EventListener
    ) -> bool:
        return self._events.remove_listener(event_type, listener)

    # ------------------------------------------------------------------
    # Execution
    async def execute_workflow(
        self,
        workflow_id: str,
        inputs: Optional[Mapping[str, Any]] = None,
        *,
        execution_id: Optional[str] = None,
        timeout: Optional[float] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowExecutionResult:
        """Run a registered workflow and return its result.

        Workflow-level failures (unknown id, concurrency ceiling, step
        failures, cancellation) are reported in the result, never raised.

        Args:
            workflow_id: Id of a registered definition.
            inputs: Caller inputs; also seed the context variables.
            execution_id: Optional caller-chosen id, must not be active.
            timeout: Step deadline in ms for steps without their own.
            metadata: Free-form context metadata (e.g. ``user_id``, ``model``).
        """
        workflow = self.get_workflow(workflow_id)
        if workflow is None:
            self._log(logging.WARNING, f"Workflow not found: {workflow_id}")
            return WorkflowExecutionResult.failed(
                f"Workflow not found: {workflow_id}", execution_id
            )

        if timeout is not None and timeout <= 0:
            return WorkflowExecutionResult.failed(
                f"Timeout must be positive: {timeout}", execution_id
            )

        # check-and-insert below must not be split by an await
        ceiling = self.config.max_concurrent_executions
        if len(self._executions) >= ceiling:
            self._log(logging.WARNING, f"Rejected {workflow_id}: concurrency ceiling {ceiling}")
            return WorkflowExecutionResult.failed(
                f"Maximum concurrent executions ({ceiling}) reached", execution_id
            )

        execution_id = execution_id or generate_execution_id()
        if execution_id in self._executions:
            return WorkflowExecutionResult.failed(
                f"Execution already active: {execution_id}", execution_id
            )

        if timeout is None:
            timeout = workflow.timeout if workflow.timeout is not None else self.config.default_timeout
        inputs = dict(inputs or {})
        context = WorkflowExecutionContext(
            workflow_id=workflow_id,
            execution_id=execution_id,
            inputs=inputs,
            variables=dict(inputs),
            status=WorkflowStatus.RUNNING,
            metadata=dict(metadata or {}),
            timeout=timeout,
            definition=workflow,
            control=ExecutionControl(execution_id),
        )
        self._executions[execution_id] = context
        self._count("executions_started")
        self._events.emit(WorkflowEventType.STARTED, workflow_id, execution_id)
        self._log(logging.INFO, f"Started workflow {workflow_id} execution_id={execution_id}")

        started = time.monotonic()
        try:
            if workflow.control_flow is ControlFlow.GRAPH:
                terminal = await self._run_graph(workflow, context)
            else:
                terminal = await self._run_sequential(workflow, context)
            result = self._finish(workflow, context, terminal, started)
        except Exception as e:
            error = str(e) or type(e).__name__
            self._log(logging.ERROR, f"Workflow {workflow_id} execution_id={execution_id} crashed: {error}")
            context.status = WorkflowStatus.FAILED
            context.duration = (time.monotonic() - started) * 1000
            self._events.emit(
                WorkflowEventType.FAILED, workflow_id, execution_id, error=error
            )
            result = self._result(workflow, context, WorkflowStatus.FAILED, error=error)
        finally:
            if self._executions.get(execution_id) is context:
                del self._executions[execution_id]

        self._count(f"executions_{result.status.value}")
        await self._persist(context, result)
        return result

    def _result(
        self,
        workflow: WorkflowDefinition,
        context: WorkflowExecutionContext,
        status: WorkflowStatus,
        error: Optional[str] = None,
    ) -> WorkflowExecutionResult:
        return WorkflowExecutionResult(
            success=status is WorkflowStatus.COMPLETED,
            status=status,
            outputs=dict(context.outputs),
            duration=context.duration or 0.0,
            step_executions=list(context.step_history),
            error=error,
            execution_id=context.execution_id,
            metadata={"workflow_id": workflow.id, "workflow_version": workflow.version},
        )

    def _finish(
        self,
        workflow: WorkflowDefinition,
        context: WorkflowExecutionContext,
        terminal: Optional[WorkflowStepExecution],
        started: float,
    ) -> WorkflowExecutionResult:
        context.duration = (time.monotonic() - started) * 1000

        if context.control.cancelled:
            # CANCELLED was already emitted by cancel_execution
            context.status = WorkflowStatus.CANCELLED
            self._log(logging.INFO, f"Workflow {workflow.id} execution_id={context.execution_id} cancelled")
            return self._result(
                workflow,
                context,
                WorkflowStatus.CANCELLED,
                error=f"Workflow execution cancelled: {context.execution_id}",
            )

        if terminal is not None:
            context.status = WorkflowStatus.FAILED
            result = self._result(workflow, context, WorkflowStatus.FAILED, error=terminal.error)
            self._events.emit(
                WorkflowEventType.FAILED,
                workflow.id,
                context.execution_id,
                step_id=terminal.step_id,
                data=result,
                error=terminal.error,
            )
            self._log(
                logging.WARNING,
                f"Workflow {workflow.id} execution_id={context.execution_id} failed "
                f"at step {terminal.step_id}: {terminal.error}",
            )
            return result

        context.status = WorkflowStatus.COMPLETED
        result = self._result(workflow, context, WorkflowStatus.COMPLETED)
        self._events.emit(
            WorkflowEventType.COMPLETED, workflow.id, context.execution_id, data=result
        )
        self._log(
            logging.INFO,
            f"Workflow {workflow.id} execution_id={context.execution_id} completed "
            f"in {context.duration:.1f}ms",
        )
        return result

    async def _run_sequential(
        self, workflow: WorkflowDefinition, context: WorkflowExecutionContext
    ) -> Optional[WorkflowStepExecution]:
        """Run steps in array order; return the first non-completed record."""
        for step in workflow.steps:
            await context.control.wait_if_paused()
            if context.control.cancelled:
                return None
            record = await self._run_step(step, context)
            if context.control.cancelled:
                return None
            if record is not None and record.status is not WorkflowStatus.COMPLETED:
                return record
        return None

    async def _run_graph(
        self, workflow: WorkflowDefinition, context: WorkflowExecutionContext
    ) -> Optional[WorkflowStepExecution]:
        """Walk successors from the start step until a step has none."""
        step_id = workflow.start_step or (workflow.steps[0].id if workflow.steps else None)
        limit = self.config.max_graph_steps
        visits = 0
        while step_id is not None:
            step = workflow.get_step(step_id)
            if step is None:
                raise StepNotFoundError(step_id, workflow.id)
            visits += 1
            if visits > limit:
                raise StepflowError(f"Graph step limit ({limit}) exceeded in workflow {workflow.id}")

            await context.control.wait_if_paused()
            if context.control.cancelled:
                return None
            record = await self._run_step(step, context)
            if context.control.cancelled:
                return None
            if record is not None and record.status is not WorkflowStatus.COMPLETED:
                return record

            if step.type == StepType.CONDITION and step.id in context.branches:
                step_id = context.branches[step.id]
            else:
                step_id = step.next
        return None

    def _should_skip(self, step: WorkflowStep, context: WorkflowExecutionContext) -> bool:
        try:
            return bool(evaluate(step.skip_if, expression_names(context)))
        except ExpressionError as e:
            self._log(logging.WARNING, f"Error evaluating skip condition for step {step.id}: {e}")
            return False

    async def _run_step(
        self, step: WorkflowStep, context: WorkflowExecutionContext
    ) -> Optional[WorkflowStepExecution]:
        """Execute one step and fold its result into the context.

        Returns ``None`` when the step is skipped.
        """
        context.current_step = step.id
        if step.skip_if is not None and self._should_skip(step, context):
            self._log(logging.INFO, f"Skipping step: {step.id} (condition not met)")
            self._events.emit(
                WorkflowEventType.STEP_SKIPPED,
                context.workflow_id,
                context.execution_id,
                step_id=step.id,
            )
            return None

        record = await self._executor.execute(step, context, context.timeout)
        if context.control.cancelled:
            # the run was cancelled while the step was in flight; drop its result
            return record

        context.step_history.append(record)
        if record.status is WorkflowStatus.COMPLETED:
            if record.output is not None:
                context.outputs[step.id] = record.output
            context.variables[step.id] = record.output
        return record

    async def _run_child(self, step_id: str, context: WorkflowExecutionContext) -> Any:
        """Resolve and invoke a step referenced by a parallel step."""
        definition = context.definition
        step = definition.get_step(step_id) if definition is not None else None
        if step is None:
            raise StepNotFoundError(step_id, context.workflow_id)
        return await self._executor.invoke(
            step, context, context.timeout or self.config.default_timeout
        )

    async def _persist(
        self, context: WorkflowExecutionContext, result: WorkflowExecutionResult
    ) -> None:
        if self._repository is None:
            return
        record = ExecutionRecord(
            execution_id=context.execution_id,
            workflow_id=context.workflow_id,
            status=result.status,
            inputs=context.inputs,
            started_at=context.start_time,
            result=result,
        )
        try:
            await self._repository.save_execution(record)
        except Exception as e:
            self._log(logging.ERROR, f"Failed to persist execution {context.execution_id}: {e}")

    # ------------------------------------------------------------------
    # Control
    def cancel_execution(self, execution_id: str) -> bool:
        """Cancel an active execution.

        The context is marked cancelled and evicted immediately; its in-flight
        step task is cancelled and any late result is discarded.
        """
        context = self._executions.pop(execution_id, None)
        if context is None:
            return False
        context.status = WorkflowStatus.CANCELLED
        context.control.cancel()
        self._events.emit(WorkflowEventType.CANCELLED, context.workflow_id, execution_id)
        self._log(logging.INFO, f"Cancelled execution_id={execution_id}")
        return True

    def pause_execution(self, execution_id: str) -> bool:
        """Pause before the next step; the in-flight step finishes normally."""
        context = self._executions.get(execution_id)
        if context is None or context.status is not WorkflowStatus.RUNNING:
            return False
        context.status = WorkflowStatus.PAUSED
        context.control.pause()
        self._events.emit(WorkflowEventType.PAUSED, context.workflow_id, execution_id)
        return True

    def resume_execution(self, execution_id: str) -> bool:
        context = self._executions.get(execution_id)
        if context is None or context.status is not WorkflowStatus.PAUSED:
            return False
        context.status = WorkflowStatus.RUNNING
        context.control.resume()
        self._events.emit(WorkflowEventType.RESUMED, context.workflow_id, execution_id)
        return True

    def get_execution_status(self, execution_id: str) -> Optional[WorkflowExecutionContext]:
        return self._executions.get(execution_id)

    def get_active_executions(self) -> List[WorkflowExecutionContext]:
        return list(self._executions.values())

    def get_metrics(self) -> EngineMetrics:
        return EngineMetrics(
            registered_workflows=len(self._workflows),
            registered_handlers=len(self._registry),
            active_executions=len(self._executions),
            event_listeners=self._events.listener_count(),
            **self._counters,
        )
