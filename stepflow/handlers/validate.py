from __future__ import annotations

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

from ..contracts import ValidateStep, WorkflowExecutionContext
from ..errors import ValidationFailedError
from ..expressions import evaluate
from .base import BaseStepHandler, expression_names
from .transform import resolve_input


def _schema_errors(schema: Dict[str, Any], value: Any) -> List[str]:
    Draft202012Validator.check_schema(schema)
    validator = Draft202012Validator(schema)
    errors = []
    for error in sorted(validator.iter_errors(value), key=lambda e: list(e.path)):
        location = "/".join(str(p) for p in error.path) or "<root>"
        errors.append(f"{location}: {error.message}")
    return errors


class ValidateStepHandler(BaseStepHandler):
    """Check the step input with an expression and an optional JSON Schema.

    Produces ``{"valid": bool, "errors": [...]}``. An invalid input raises
    :class:`ValidationFailedError` unless ``fail_on_invalid`` is off.
    """

    async def execute(self, step: ValidateStep, context: WorkflowExecutionContext) -> Any:
        value = resolve_input(step, context)
        errors: List[str] = []

        if not evaluate(step.validation, expression_names(context, input=value)):
            errors.append("validation expression returned false")
        if step.json_schema:
            errors.extend(_schema_errors(step.json_schema, value))

        if errors and step.fail_on_invalid:
            raise ValidationFailedError(step.id, errors)
        return {"valid": not errors, "errors": errors}
