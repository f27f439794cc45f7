"""Read workflow definitions from YAML or JSON documents."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Union

import yaml
from pydantic import ValidationError

from .contracts import WorkflowDefinition
from .errors import WorkflowLoadError

logger = logging.getLogger(__name__)

WORKFLOW_SUFFIXES = (".yaml", ".yml", ".json")


def load_workflow(path: Union[str, Path]) -> WorkflowDefinition:
    """Load and validate a single workflow definition file.

    Field names may be snake_case or camelCase. Expressions are kept as
    source text; callables can only be supplied from Python.

    Raises:
        WorkflowLoadError: the file is missing, unparsable or invalid.
    """

    path = Path(path)
    if not path.is_file():
        raise WorkflowLoadError(f"Workflow file not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise WorkflowLoadError(f"Could not parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise WorkflowLoadError(f"Workflow file {path} must contain a mapping")

    try:
        workflow = WorkflowDefinition.model_validate(data)
    except ValidationError as e:
        raise WorkflowLoadError(f"Invalid workflow definition in {path}: {e}") from e

    logger.debug(f"Loaded workflow {workflow.id} from {path}")
    return workflow


def load_workflows(directory: Union[str, Path]) -> List[WorkflowDefinition]:
    """Load every workflow file directly inside ``directory``, sorted by name."""

    directory = Path(directory)
    if not directory.is_dir():
        raise WorkflowLoadError(f"Workflow directory not found: {directory}")
    return [
        load_workflow(path)
        for path in sorted(directory.iterdir())
        if path.is_file() and path.suffix.lower() in WORKFLOW_SUFFIXES
    ]
