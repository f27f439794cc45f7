from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..contracts import APICallStep, WorkflowExecutionContext
from ..errors import APICallError
from ..utils import get_nested_value
from .base import BaseStepHandler

logger = logging.getLogger(__name__)


class APICallStepHandler(BaseStepHandler):
    """Issue an HTTP request and return the decoded JSON response.

    A shared ``httpx.AsyncClient`` may be injected; otherwise one is opened per
    call. Client-side timeouts are disabled because the step executor already
    enforces the step deadline.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def execute(self, step: APICallStep, context: WorkflowExecutionContext) -> Any:
        request: Dict[str, Any] = {"headers": step.headers}
        if step.method != "GET":
            request["json"] = step.body if step.body is not None else {}

        logger.debug(
            f"{step.method} {step.endpoint} for step {step.id} "
            f"execution_id={context.execution_id}"
        )
        try:
            if self._client is not None:
                response = await self._client.request(step.method, step.endpoint, **request)
            else:
                async with httpx.AsyncClient(timeout=None) as client:
                    response = await client.request(step.method, step.endpoint, **request)
        except httpx.HTTPError as e:
            raise APICallError(f"API call failed: {e}") from e

        if not response.is_success:
            raise APICallError(
                f"API call failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=response.text,
            )

        if not response.content:
            return None
        try:
            data = response.json()
        except ValueError as e:
            raise APICallError(
                f"API call returned invalid JSON: {e}", status_code=response.status_code
            ) from e

        if step.response_path:
            return get_nested_value(data, step.response_path)
        return data
