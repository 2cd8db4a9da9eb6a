"""Lifecycle events emitted by the executor."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

MAX_SUBSCRIBERS = 16


class EventType(StrEnum):
    TASK_STARTED = "task.started"
    TASK_RESUMED = "task.resumed"
    STEP_STARTED = "task.step.started"
    STEP_COMPLETED = "task.step.completed"
    STEP_FAILED = "task.step.failed"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"
    TASK_PAUSED = "task.paused"
    TASK_CANCELLED = "task.cancelled"
    APPROVAL_REQUIRED = "approval.required"


@dataclass(frozen=True)
class AgentEvent:
    type: EventType
    task_id: str
    step_number: int | None = None
    data: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[AgentEvent], None]


class EventBus:
    """Fire-and-forget dispatch to a bounded list of subscribers.

    A failing handler is logged and skipped; it never reaches the caller.
    """

    def __init__(self, max_subscribers: int = MAX_SUBSCRIBERS):
        self._max_subscribers = max_subscribers
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler and return a callable that removes it.

        Raises:
            ValueError: If the subscriber limit is reached
        """
        if len(self._handlers) >= self._max_subscribers:
            raise ValueError(
                f"Event bus already has {self._max_subscribers} subscribers"
            )
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: AgentEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Error in event handler for {event.type}")
