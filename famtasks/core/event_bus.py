"""In-process observer bus for task domain events."""

import logging

from famtasks.core.ports import TaskEventHandler
from famtasks.domain.events import TaskEvent


logger = logging.getLogger(__name__)


class EventBus:
    """Deliver committed task events to every subscriber, in subscription order.

    Events describe changes that are already durable, so a failing subscriber
    is logged and skipped; it never undoes the change or starves the others.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[str, TaskEventHandler]] = []

    def subscribe(self, handler: TaskEventHandler, *, name: str | None = None) -> None:
        self._handlers.append((name or getattr(handler, "__qualname__", repr(handler)), handler))

    def unsubscribe(self, handler: TaskEventHandler) -> None:
        self._handlers = [(name, h) for name, h in self._handlers if h != handler]

    @property
    def subscriber_names(self) -> list[str]:
        return [name for name, _ in self._handlers]

    async def publish(self, event: TaskEvent) -> None:
        for name, handler in list(self._handlers):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "Task event subscriber %s failed for %s on task %s",
                    name,
                    event.event_type,
                    event.task_id,
                )
