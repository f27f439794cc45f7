"""Command line interface for validating and running workflow files."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from stepflow.config import load_config
from stepflow.contracts import ControlFlow, WorkflowDefinition
from stepflow.engine import WorkflowEngine
from stepflow.errors import WorkflowLoadError
from stepflow.loader import load_workflow

app = typer.Typer(help="CLI for stepflow workflows")

workflow_app = typer.Typer(help="Commands for workflow definition files")

app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    """Stepflow CLI entry point."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


def _load_or_exit(path: Path) -> WorkflowDefinition:
    try:
        return load_workflow(path)
    except WorkflowLoadError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)


@workflow_app.command("validate")
def workflow_validate(path: Path) -> None:
    """
    Validate a workflow definition file and summarise its steps.

    Args:
        path: YAML or JSON workflow file

    Example:
        stepflow workflow validate ./workflows/onboarding.yaml
        # Output: onboarding (1.0.0): Customer onboarding
        #         - fetch [api_call]
        #         - shape [transform]
    """
    workflow = _load_or_exit(path)
    typer.echo(f"{workflow.id} ({workflow.version}): {workflow.name}")
    if workflow.control_flow is ControlFlow.GRAPH:
        start = workflow.start_step or (workflow.steps[0].id if workflow.steps else "-")
        typer.echo(f"Control flow: graph, start: {start}")
    for step in workflow.steps:
        typer.echo(f"- {step.id} [{step.type}]" + (f" -> {step.next}" if step.next else ""))


@workflow_app.command("run")
def workflow_run(
    path: Path,
    inputs: str = typer.Option("{}", help="Workflow inputs as a JSON object"),
    timeout: Optional[float] = typer.Option(None, help="Default step timeout in milliseconds"),
    config: Optional[Path] = typer.Option(None, help="Engine configuration YAML"),
) -> None:
    """
    Load a workflow file and execute it with a fresh engine.

    Prints the execution result as JSON. Exits with code 1 when the run
    does not complete successfully.

    Example:
        stepflow workflow run ./double.yaml --inputs '{"t1": 21}'
    """
    workflow = _load_or_exit(path)
    try:
        payload = json.loads(inputs)
    except json.JSONDecodeError as e:
        typer.secho(f"--inputs is not valid JSON: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(payload, dict):
        typer.secho("--inputs must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    engine = WorkflowEngine(load_config(str(config) if config else None))
    engine.register_workflow(workflow)
    result = asyncio.run(engine.execute_workflow(workflow.id, payload, timeout=timeout))
    typer.echo(result.model_dump_json(indent=2, exclude_none=True))
    if not result.success:
        raise typer.Exit(code=1)
