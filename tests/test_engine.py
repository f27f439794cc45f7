"""Workflow engine tests."""

import asyncio
import logging
import time

import httpx
import pytest

from stepflow import WorkflowBuilder, WorkflowEngine
from stepflow.config import EngineConfig, PersistenceConfig
from stepflow.contracts import (
    RetryPolicy,
    StepType,
    TransformStep,
    WorkflowDefinition,
    WorkflowEventType,
    WorkflowStatus,
)
from stepflow.errors import DuplicateHandlerError
from stepflow.handlers import DelayStepHandler
from stepflow.prompts import TemplatePromptCompiler


def _engine(**config) -> WorkflowEngine:
    return WorkflowEngine(EngineConfig(**config))


def _record_events(engine: WorkflowEngine) -> list:
    events = []
    for event_type in WorkflowEventType:
        engine.add_event_listener(event_type, events.append)
    return events


@pytest.mark.asyncio
async def test_transform_doubles_bound_input():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("double", "Double").add_transform_step("t1", "Double", "input * 2").build()
    )

    result = await engine.execute_workflow("double", {"t1": 21})

    assert result.success
    assert result.status == WorkflowStatus.COMPLETED
    assert result.outputs == {"t1": 42}
    assert len(result.step_executions) == 1
    assert result.step_executions[0].input == 21
    assert result.execution_id.startswith("exec_")


@pytest.mark.asyncio
async def test_unknown_workflow_returns_failed_result():
    engine = _engine()

    result = await engine.execute_workflow("missing")

    assert not result.success
    assert result.status == WorkflowStatus.FAILED
    assert result.error == "Workflow not found: missing"
    assert result.step_executions == []


@pytest.mark.asyncio
async def test_failure_stops_remaining_steps():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Failing")
        .add_transform_step("t1", "One", "1")
        .add_transform_step("t2", "Boom", "1 / 0")
        .add_transform_step("t3", "Never", "3")
        .build()
    )

    result = await engine.execute_workflow("wf")

    assert result.status == WorkflowStatus.FAILED
    assert [r.step_id for r in result.step_executions] == ["t1", "t2"]
    assert result.step_executions[-1].status == WorkflowStatus.FAILED
    assert "division by zero" in result.error
    assert result.outputs == {"t1": 1}


@pytest.mark.asyncio
async def test_reregistering_replaces_definition():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "First").add_transform_step("t", "T", "'first'").build()
    )
    engine.register_workflow(
        WorkflowBuilder("wf", "Second").add_transform_step("t", "T", "'second'").build()
    )

    result = await engine.execute_workflow("wf")

    assert engine.get_workflow("wf").name == "Second"
    assert len(engine.list_workflows()) == 1
    assert result.outputs == {"t": "second"}


@pytest.mark.asyncio
async def test_concurrency_ceiling_rejects_immediately():
    engine = _engine(max_concurrent_executions=1)
    engine.register_workflow(
        WorkflowBuilder("slow", "Slow").add_delay_step("d", "Wait", 200).build()
    )

    first = asyncio.ensure_future(engine.execute_workflow("slow"))
    await asyncio.sleep(0.02)
    started = time.monotonic()
    rejected = await engine.execute_workflow("slow")

    assert time.monotonic() - started < 0.1
    assert rejected.status == WorkflowStatus.FAILED
    assert rejected.error == "Maximum concurrent executions (1) reached"
    assert (await first).success
    assert engine.get_active_executions() == []


@pytest.mark.asyncio
async def test_active_execution_id_is_rejected():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("slow", "Slow").add_delay_step("d", "Wait", 100).build()
    )

    first = asyncio.ensure_future(engine.execute_workflow("slow", execution_id="dup"))
    await asyncio.sleep(0.01)
    second = await engine.execute_workflow("slow", execution_id="dup")

    assert second.error == "Execution already active: dup"
    assert (await first).success


@pytest.mark.asyncio
async def test_step_timeout_cancels_handler():
    engine = _engine()
    finished = []

    async def slow(config, context):
        await asyncio.sleep(1)
        finished.append(True)

    engine.register_custom_handler("slow", slow)
    engine.register_workflow(
        WorkflowBuilder("wf", "Timeout").add_custom_step("c", "Slow", "slow", timeout=50).build()
    )

    started = time.monotonic()
    result = await engine.execute_workflow("wf")
    elapsed = time.monotonic() - started

    assert result.status == WorkflowStatus.FAILED
    assert result.error == "Step execution timeout"
    assert elapsed < 0.5
    assert 40 <= result.step_executions[0].duration < 200
    await asyncio.sleep(0)
    assert finished == []


@pytest.mark.asyncio
async def test_call_timeout_applies_to_steps_without_their_own():
    engine = _engine()

    async def slow(config, context):
        await asyncio.sleep(1)

    engine.register_custom_handler("slow", slow)
    engine.register_workflow(
        WorkflowBuilder("wf", "Timeout").add_custom_step("c", "Slow", "slow").build()
    )

    result = await engine.execute_workflow("wf", timeout=30)

    assert result.error == "Step execution timeout"


@pytest.mark.asyncio
async def test_zero_call_timeout_is_rejected():
    engine = _engine()
    engine.register_workflow(WorkflowBuilder("wf", "Delay").add_delay_step("d", "D", 1).build())

    result = await engine.execute_workflow("wf", timeout=0)

    assert result.status == WorkflowStatus.FAILED
    assert result.error == "Timeout must be positive: 0"
    assert result.step_executions == []
    assert engine.get_active_executions() == []


@pytest.mark.asyncio
async def test_sync_custom_function_is_bounded_by_deadline():
    engine = _engine()

    def blocking(config, context):
        time.sleep(0.3)
        return "late"

    engine.register_custom_handler("blocking", blocking)
    engine.register_workflow(
        WorkflowBuilder("wf", "Blocking")
        .add_custom_step("c", "Blocking", "blocking", timeout=50)
        .build()
    )

    started = time.monotonic()
    result = await engine.execute_workflow("wf")
    elapsed = time.monotonic() - started

    assert result.error == "Step execution timeout"
    assert elapsed < 0.25


@pytest.mark.asyncio
async def test_oversized_expression_fails_without_blocking():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Power")
        .add_transform_step("t", "Power", "((((7 ** 99) ** 99) ** 99) ** 20) > 0", timeout=50)
        .build()
    )

    started = time.monotonic()
    result = await engine.execute_workflow("wf")
    elapsed = time.monotonic() - started

    assert result.status == WorkflowStatus.FAILED
    assert "Power result exceeds" in result.error
    assert elapsed < 0.5


@pytest.mark.asyncio
async def test_enable_logging_false_silences_step_retries(caplog):
    engine = _engine(enable_logging=False, step_retry=RetryPolicy(initial_delay=1))

    def broken(config, context):
        raise RuntimeError("always")

    engine.register_custom_handler("broken", broken)
    engine.register_workflow(
        WorkflowBuilder("wf", "Retry").add_custom_step("c", "Broken", "broken", retry_count=2).build()
    )

    with caplog.at_level(logging.DEBUG, logger="stepflow"):
        result = await engine.execute_workflow("wf")

    assert result.step_executions[0].retry_count == 2
    assert [r for r in caplog.records if r.name in ("stepflow.engine", "stepflow.executor")] == []


@pytest.mark.asyncio
async def test_cancel_execution():
    engine = _engine()
    events = _record_events(engine)
    engine.register_workflow(
        WorkflowBuilder("wf", "Long")
        .add_delay_step("d", "Wait", 5000)
        .add_transform_step("t", "After", "'late'")
        .build()
    )

    task = asyncio.ensure_future(engine.execute_workflow("wf", execution_id="run-1"))
    await asyncio.sleep(0.05)

    assert engine.get_execution_status("run-1").status == WorkflowStatus.RUNNING
    assert engine.cancel_execution("run-1") is True
    assert engine.get_execution_status("run-1") is None

    result = await asyncio.wait_for(task, timeout=1)

    assert result.status == WorkflowStatus.CANCELLED
    assert not result.success
    assert "t" not in result.outputs
    assert engine.cancel_execution("run-1") is False
    assert engine.cancel_execution("unknown") is False
    assert WorkflowEventType.CANCELLED in [e.type for e in events]
    assert WorkflowEventType.COMPLETED not in [e.type for e in events]


@pytest.mark.asyncio
async def test_events_emitted_in_order():
    engine = _engine()
    events = _record_events(engine)
    engine.register_workflow(
        WorkflowBuilder("wf", "One step").add_transform_step("t1", "T", "input * 2").build()
    )

    result = await engine.execute_workflow("wf", {"t1": 2})

    assert [e.type for e in events] == [
        WorkflowEventType.STARTED,
        WorkflowEventType.STEP_STARTED,
        WorkflowEventType.STEP_COMPLETED,
        WorkflowEventType.COMPLETED,
    ]
    assert {e.execution_id for e in events} == {result.execution_id}
    assert events[2].data == {"output": 4}


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_run():
    engine = _engine()

    def broken(event):
        raise RuntimeError("listener bug")

    engine.add_event_listener(WorkflowEventType.STEP_STARTED, broken)
    engine.register_workflow(
        WorkflowBuilder("wf", "T").add_transform_step("t1", "T", "1").build()
    )

    result = await engine.execute_workflow("wf")

    assert result.success
    assert engine.remove_event_listener(WorkflowEventType.STEP_STARTED, broken)
    assert not engine.remove_event_listener(WorkflowEventType.STEP_STARTED, broken)


@pytest.mark.asyncio
async def test_delay_step_leaves_outputs_empty():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Delay").add_delay_step("d1", "Wait", 10).build()
    )

    result = await engine.execute_workflow("wf")

    assert result.success
    assert result.outputs == {}
    assert result.step_executions[0].status == WorkflowStatus.COMPLETED
    assert result.step_executions[0].output is None


@pytest.mark.asyncio
async def test_skip_if_skips_step():
    engine = _engine()
    events = _record_events(engine)
    engine.register_workflow(
        WorkflowBuilder("wf", "Skip")
        .add_transform_step("t1", "Skipped", "'x'", skip_if="skip")
        .add_transform_step("t2", "Runs", "'y'")
        .build()
    )

    result = await engine.execute_workflow("wf", {"skip": True})

    assert result.outputs == {"t2": "y"}
    assert [r.step_id for r in result.step_executions] == ["t2"]
    skipped = [e for e in events if e.type == WorkflowEventType.STEP_SKIPPED]
    assert [e.step_id for e in skipped] == ["t1"]


@pytest.mark.asyncio
async def test_step_retries_until_success():
    engine = _engine(step_retry=RetryPolicy(initial_delay=1))
    calls = []

    def flaky(config, context):
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("not yet")
        return "ok"

    engine.register_custom_handler("flaky", flaky)
    engine.register_workflow(
        WorkflowBuilder("wf", "Retry").add_custom_step("c", "Flaky", "flaky", retry_count=2).build()
    )

    result = await engine.execute_workflow("wf")

    assert result.success
    assert result.outputs == {"c": "ok"}
    assert result.step_executions[0].retry_count == 2
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_step_retries_exhausted():
    engine = _engine(step_retry=RetryPolicy(initial_delay=1))

    def broken(config, context):
        raise RuntimeError("always")

    engine.register_custom_handler("broken", broken)
    engine.register_workflow(
        WorkflowBuilder("wf", "Retry").add_custom_step("c", "Broken", "broken", retry_count=1).build()
    )

    result = await engine.execute_workflow("wf")

    assert result.error == "always"
    assert result.step_executions[0].retry_count == 1


@pytest.mark.asyncio
async def test_graph_mode_follows_condition_branch():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Graph")
        .add_condition_step("check", "Check", "score > 50", "high", "low")
        .add_transform_step("high", "High", "'pass'")
        .add_transform_step("low", "Low", "'fail'")
        .start_at("check")
        .build()
    )

    high = await engine.execute_workflow("wf", {"score": 80})
    low = await engine.execute_workflow("wf", {"score": 10})

    assert high.outputs == {"high": "pass"}
    assert [r.step_id for r in high.step_executions] == ["check", "high"]
    assert low.outputs == {"low": "fail"}


@pytest.mark.asyncio
async def test_sequential_mode_runs_every_step():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Sequential")
        .add_condition_step("check", "Check", "score > 50", "high", "low")
        .add_transform_step("high", "High", "'pass'")
        .add_transform_step("low", "Low", "'fail'")
        .build()
    )

    result = await engine.execute_workflow("wf", {"score": 80})

    assert result.outputs == {"high": "pass", "low": "fail"}


@pytest.mark.asyncio
async def test_graph_mode_unknown_successor_fails():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Graph")
        .add_transform_step("a", "A", "1", next="nowhere")
        .start_at("a")
        .build()
    )

    result = await engine.execute_workflow("wf")

    assert result.status == WorkflowStatus.FAILED
    assert result.error == "Step not found: nowhere in workflow wf"
    assert engine.get_active_executions() == []


@pytest.mark.asyncio
async def test_graph_mode_step_limit():
    engine = _engine(max_graph_steps=5)
    engine.register_workflow(
        WorkflowBuilder("wf", "Loop").add_transform_step("a", "A", "1", next="a").start_at("a").build()
    )

    result = await engine.execute_workflow("wf")

    assert result.status == WorkflowStatus.FAILED
    assert result.error == "Graph step limit (5) exceeded in workflow wf"
    assert len(result.step_executions) == 5


@pytest.mark.asyncio
async def test_pause_and_resume():
    engine = _engine()
    events = _record_events(engine)
    engine.register_workflow(
        WorkflowBuilder("wf", "Pausable")
        .add_delay_step("d", "Wait", 50)
        .add_transform_step("t", "Done", "'done'")
        .build()
    )

    task = asyncio.ensure_future(engine.execute_workflow("wf", execution_id="p1"))
    await asyncio.sleep(0.01)
    assert engine.pause_execution("p1") is True
    assert engine.pause_execution("p1") is False

    await asyncio.sleep(0.15)
    context = engine.get_execution_status("p1")
    assert context.status == WorkflowStatus.PAUSED
    assert [r.step_id for r in context.step_history] == ["d"]
    assert not task.done()

    assert engine.resume_execution("p1") is True
    result = await asyncio.wait_for(task, timeout=1)

    assert result.outputs == {"t": "done"}
    types = [e.type for e in events]
    assert types.index(WorkflowEventType.PAUSED) < types.index(WorkflowEventType.RESUMED)


@pytest.mark.asyncio
async def test_cancel_wakes_paused_execution():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Pausable")
        .add_delay_step("d", "Wait", 10)
        .add_transform_step("t", "Done", "'done'")
        .build()
    )

    task = asyncio.ensure_future(engine.execute_workflow("wf", execution_id="p1"))
    await asyncio.sleep(0)
    engine.pause_execution("p1")
    await asyncio.sleep(0.05)
    engine.cancel_execution("p1")
    result = await asyncio.wait_for(task, timeout=1)

    assert result.status == WorkflowStatus.CANCELLED
    assert result.outputs == {}


@pytest.mark.asyncio
async def test_parallel_step_collects_children():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Parallel")
        .add_parallel_step("p", "Fan out", ["a", "b"])
        .add_transform_step("a", "A", "1")
        .add_transform_step("b", "B", "2")
        .start_at("p")
        .build()
    )

    result = await engine.execute_workflow("wf")

    assert result.outputs == {
        "p": [{"step_id": "a", "output": 1}, {"step_id": "b", "output": 2}]
    }


@pytest.mark.asyncio
async def test_parallel_step_first_completed_wins():
    engine = _engine()

    async def fast(config, context):
        return "fast"

    async def slow(config, context):
        await asyncio.sleep(1)
        return "slow"

    engine.register_custom_handler("fast", fast)
    engine.register_custom_handler("slow", slow)
    engine.register_workflow(
        WorkflowBuilder("wf", "Race")
        .add_parallel_step("p", "Race", ["s", "f"], wait_for_all=False)
        .add_custom_step("s", "Slow", "slow")
        .add_custom_step("f", "Fast", "fast")
        .start_at("p")
        .build()
    )

    started = time.monotonic()
    result = await engine.execute_workflow("wf")

    assert result.outputs == {"p": {"step_id": "f", "output": "fast"}}
    assert time.monotonic() - started < 0.5


@pytest.mark.asyncio
async def test_parallel_step_unknown_child_fails():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Parallel").add_parallel_step("p", "Fan out", ["ghost"]).build()
    )

    result = await engine.execute_workflow("wf")

    assert result.error == "Step not found: ghost in workflow wf"


@pytest.mark.asyncio
async def test_api_call_failure_reports_status():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    engine = WorkflowEngine(http_client=client)
    engine.register_workflow(
        WorkflowBuilder("wf", "API")
        .add_api_call_step("call", "Call", "https://api.example.com/items")
        .build()
    )

    result = await engine.execute_workflow("wf")
    await client.aclose()

    assert result.status == WorkflowStatus.FAILED
    assert "500" in result.error
    assert "Internal Server Error" in result.error


@pytest.mark.asyncio
async def test_prompt_step_uses_compiler():
    compiler = TemplatePromptCompiler({"greet": "Hello {name}"})
    engine = WorkflowEngine(prompt_compiler=compiler)
    engine.register_workflow(
        WorkflowBuilder("wf", "Prompt").add_prompt_step("p", "Greet", "greet").build()
    )

    result = await engine.execute_workflow("wf", {"name": "Ada"})

    assert result.outputs == {"p": "Hello Ada"}


@pytest.mark.asyncio
async def test_prompt_step_without_compiler_fails():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("wf", "Prompt").add_prompt_step("p", "Greet", "greet").build()
    )

    result = await engine.execute_workflow("wf")

    assert result.error == "No prompt compiler configured for prompt steps"


def test_duplicate_handler_registration_rejected():
    engine = _engine()
    handler = DelayStepHandler()

    with pytest.raises(DuplicateHandlerError):
        engine.register_step_handler(StepType.DELAY, handler)

    engine.register_step_handler(StepType.DELAY, handler, replace=True)
    assert engine.get_step_handler(StepType.DELAY) is handler


def test_unregister_workflow():
    engine = _engine()
    engine.register_workflow(WorkflowDefinition(id="wf", name="WF"))

    assert engine.unregister_workflow("wf") is True
    assert engine.unregister_workflow("wf") is False
    assert engine.get_workflow("wf") is None


@pytest.mark.asyncio
async def test_metrics_count_executions():
    engine = _engine()
    engine.register_workflow(
        WorkflowBuilder("ok", "OK").add_transform_step("t", "T", "1").build()
    )
    engine.register_workflow(
        WorkflowBuilder("bad", "Bad").add_transform_step("t", "T", "missing_name").build()
    )

    await engine.execute_workflow("ok")
    await engine.execute_workflow("bad")
    metrics = engine.get_metrics()

    assert metrics.registered_workflows == 2
    assert metrics.registered_handlers == len(StepType)
    assert metrics.active_executions == 0
    assert metrics.executions_started == 2
    assert metrics.executions_completed == 1
    assert metrics.executions_failed == 1


@pytest.mark.asyncio
async def test_metrics_disabled():
    engine = _engine(enable_metrics=False)
    engine.register_workflow(WorkflowDefinition(id="wf", name="WF"))

    await engine.execute_workflow("wf")

    assert engine.get_metrics().executions_started == 0


@pytest.mark.asyncio
async def test_terminal_results_are_persisted():
    engine = _engine(persistence=PersistenceConfig(enabled=True))
    engine.register_workflow(
        WorkflowBuilder("wf", "T").add_transform_step("t1", "T", "input + 1").build()
    )

    result = await engine.execute_workflow("wf", {"t1": 1})
    record = await engine.repository.get_execution(result.execution_id)

    assert record.status == WorkflowStatus.COMPLETED
    assert record.inputs == {"t1": 1}
    assert record.result.outputs == {"t1": 2}


@pytest.mark.asyncio
async def test_definition_is_not_mutated_by_execution():
    engine = _engine()
    workflow = WorkflowDefinition(
        id="wf", name="WF", steps=[TransformStep(id="t", name="T", transform="input")]
    )
    engine.register_workflow(workflow)

    await engine.execute_workflow("wf", {"t": 5}, metadata={"user_id": "u1"})

    assert workflow.metadata == {}
    assert engine.get_workflow("wf") is workflow
