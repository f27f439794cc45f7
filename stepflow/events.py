"""Per-event-type listener dispatch for workflow observability."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from .contracts import WorkflowEvent, WorkflowEventType

logger = logging.getLogger(__name__)

EventListener = Callable[[WorkflowEvent], Any]


class EventBus:
    """Holds listeners keyed by event type and fans events out to them.

    A listener that raises is logged and skipped; the emitting operation and
    the remaining listeners are unaffected.
    """

    def __init__(self) -> None:
        self._listeners: Dict[WorkflowEventType, List[EventListener]] = defaultdict(list)

    def add_listener(self, event_type: WorkflowEventType, listener: EventListener) -> None:
        self._listeners[WorkflowEventType(event_type)].append(listener)

    def remove_listener(
        self, event_type: WorkflowEventType, listener: EventListener
    ) -> bool:
        listeners = self._listeners.get(WorkflowEventType(event_type))
        if listeners and listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def listener_count(self) -> int:
        return sum(len(listeners) for listeners in self._listeners.values())

    def emit(
        self,
        event_type: WorkflowEventType,
        workflow_id: str,
        execution_id: str,
        step_id: Optional[str] = None,
        data: Any = None,
        error: Optional[str] = None,
    ) -> WorkflowEvent:
        event = WorkflowEvent(
            type=event_type,
            workflow_id=workflow_id,
            execution_id=execution_id,
            step_id=step_id,
            data=data,
            error=error,
        )
        # copy so listeners may unsubscribe themselves while being notified
        for listener in list(self._listeners.get(event_type, ())):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"Event listener {getattr(listener, '__name__', listener)!r} failed "
                    f"on {event_type.value} for execution_id={execution_id}: {e}"
                )
        return event
