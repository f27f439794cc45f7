"""Runs a single workflow step against an execution context."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from .contracts import (
    RetryPolicy,
    WorkflowEventType,
    WorkflowExecutionContext,
    WorkflowStatus,
    WorkflowStep,
    WorkflowStepExecution,
)
from .errors import (
    ExecutionCancelledError,
    HandlerNotFoundError,
    StepflowError,
    StepTimeoutError,
    StepValidationError,
)
from .events import EventBus
from .registry import StepHandler, StepHandlerRegistry
from .utils.retry import compute_backoff

logger = logging.getLogger(__name__)


class StepExecutor:
    """Resolve, validate, time-box and record one step.

    Every call to :meth:`execute` emits ``STEP_STARTED`` first and produces
    exactly one :class:`WorkflowStepExecution`; handler errors never escape.
    """

    def __init__(
        self,
        registry: StepHandlerRegistry,
        events: EventBus,
        step_retry: Optional[RetryPolicy] = None,
        *,
        enable_logging: bool = True,
    ) -> None:
        self._registry = registry
        self._events = events
        self._step_retry = step_retry or RetryPolicy()
        self._enable_logging = enable_logging

    def _log(self, level: int, message: str) -> None:
        if self._enable_logging:
            logger.log(level, message)

    def _resolve(self, step: WorkflowStep) -> StepHandler:
        handler = self._registry.get(step.type)
        if handler is None:
            raise HandlerNotFoundError(step.type)
        return handler

    @staticmethod
    def _validate(handler: StepHandler, step: WorkflowStep, bound_input: Any) -> None:
        validate = getattr(handler, "validate", None)
        if validate is not None and not validate(step, bound_input):
            raise StepValidationError(step.id)

    async def invoke_handler(
        self,
        handler: StepHandler,
        step: WorkflowStep,
        context: WorkflowExecutionContext,
        timeout: float,
    ) -> Any:
        """Await ``handler.execute`` under a deadline of ``timeout`` ms.

        The handler runs in its own task; it is cancelled when the deadline
        passes or the execution is cancelled, and its late result is dropped.
        """
        control = context.control
        control.raise_if_cancelled()

        async def _call() -> Any:
            result = handler.execute(step, context)
            if inspect.isawaitable(result):
                result = await result
            return result

        task = asyncio.ensure_future(_call())
        watcher = asyncio.ensure_future(control.wait_cancelled())
        try:
            done, _ = await asyncio.wait(
                {task, watcher},
                timeout=timeout / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            watcher.cancel()
            if not task.done():
                task.cancel()

        if control.cancelled:
            raise ExecutionCancelledError(context.execution_id)
        if task not in done:
            raise StepTimeoutError(timeout)
        if task.cancelled():
            raise StepflowError(f"Step handler was cancelled: {step.id}")
        return task.result()

    async def invoke(
        self, step: WorkflowStep, context: WorkflowExecutionContext, timeout: float
    ) -> Any:
        """Run ``step`` without recording history or emitting events.

        Used for children of parallel steps; errors propagate to the caller.
        """
        handler = self._resolve(step)
        self._validate(handler, step, context.bound_input(step.id))
        return await self.invoke_handler(handler, step, context, step.timeout or timeout)

    def _retry_policy(self, context: WorkflowExecutionContext) -> RetryPolicy:
        definition = context.definition
        if definition is not None and definition.retry_policy is not None:
            return definition.retry_policy
        return self._step_retry

    async def _backoff(self, attempt: int, context: WorkflowExecutionContext) -> None:
        policy = self._retry_policy(context)
        delay = compute_backoff(
            attempt,
            initial_delay=policy.initial_delay,
            multiplier=policy.backoff_multiplier,
            max_delay=policy.max_delay,
        )
        try:
            await asyncio.wait_for(context.control.wait_cancelled(), timeout=delay / 1000)
        except asyncio.TimeoutError:
            return
        raise ExecutionCancelledError(context.execution_id)

    def _record(
        self,
        step: WorkflowStep,
        status: WorkflowStatus,
        start_time: datetime,
        started: float,
        bound_input: Any,
        retries: int,
        output: Any = None,
        error: Optional[str] = None,
    ) -> WorkflowStepExecution:
        return WorkflowStepExecution(
            step_id=step.id,
            status=status,
            start_time=start_time,
            end_time=datetime.now(timezone.utc),
            duration=(time.monotonic() - started) * 1000,
            input=bound_input,
            output=output,
            error=error,
            retry_count=retries,
            metadata=dict(step.metadata),
        )

    async def execute(
        self, step: WorkflowStep, context: WorkflowExecutionContext, timeout: float
    ) -> WorkflowStepExecution:
        """Execute ``step`` with retries and return its record.

        ``timeout`` is the fallback deadline in ms when the step sets none.
        """
        self._events.emit(
            WorkflowEventType.STEP_STARTED,
            context.workflow_id,
            context.execution_id,
            step_id=step.id,
        )
        start_time = datetime.now(timezone.utc)
        started = time.monotonic()
        bound_input = context.bound_input(step.id)
        retries = 0

        try:
            handler = self._resolve(step)
            self._validate(handler, step, bound_input)
            while True:
                try:
                    output = await self.invoke_handler(
                        handler, step, context, step.timeout or timeout
                    )
                    break
                except ExecutionCancelledError:
                    raise
                except Exception as e:
                    if retries >= step.retry_count:
                        raise
                    retries += 1
                    self._log(
                        logging.WARNING,
                        f"Step {step.id} failed ({e}); retry {retries}/{step.retry_count} "
                        f"for execution_id={context.execution_id}"
                    )
                    await self._backoff(retries, context)
        except ExecutionCancelledError as e:
            self._log(logging.INFO, f"Step {step.id} abandoned: {e}")
            return self._record(
                step,
                WorkflowStatus.CANCELLED,
                start_time,
                started,
                bound_input,
                retries,
                error=str(e),
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            self._events.emit(
                WorkflowEventType.STEP_FAILED,
                context.workflow_id,
                context.execution_id,
                step_id=step.id,
                error=error,
            )
            return self._record(
                step,
                WorkflowStatus.FAILED,
                start_time,
                started,
                bound_input,
                retries,
                error=error,
            )

        self._events.emit(
            WorkflowEventType.STEP_COMPLETED,
            context.workflow_id,
            context.execution_id,
            step_id=step.id,
            data={"output": output},
        )
        return self._record(
            step,
            WorkflowStatus.COMPLETED,
            start_time,
            started,
            bound_input,
            retries,
            output=output,
        )
