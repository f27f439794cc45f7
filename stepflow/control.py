"""Cooperative cancellation and pause signalling for a single execution."""

from __future__ import annotations

import asyncio

from .errors import ExecutionCancelledError


class ExecutionControl:
    """Token shared between the engine and the handlers of one execution.

    The engine flips it from ``cancel_execution``/``pause_execution``; handlers
    that run long loops may poll :meth:`raise_if_cancelled` at their own await
    points. In-flight handler tasks are cancelled by the step executor when the
    token fires, so most handlers never need to look at it.
    """

    def __init__(self, execution_id: str = "") -> None:
        self.execution_id = execution_id
        self._cancelled = asyncio.Event()
        self._running = asyncio.Event()
        self._running.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    def cancel(self) -> None:
        self._cancelled.set()
        # wake anything parked in wait_if_paused
        self._running.set()

    def pause(self) -> None:
        if not self.cancelled:
            self._running.clear()

    def resume(self) -> None:
        self._running.set()

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()

    async def wait_if_paused(self) -> None:
        if self.paused:
            await self._running.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ExecutionCancelledError(self.execution_id)
