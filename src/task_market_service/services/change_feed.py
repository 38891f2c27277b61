"""In-process change notifications for bid and task rows."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator


@dataclass(frozen=True)
class ChangeEvent:
    """A committed row change, scoped to one task."""

    table: str
    operation: str
    task_id: str
    record: dict[str, Any]


class ChangeFeed:
    """
    Fan-out of committed store changes to per-task subscribers.

    The feed is a visibility aid only: events published while nobody is
    subscribed are dropped, and a subscriber whose queue is full loses
    events instead of blocking the writer. The store stays the source
    of truth.
    """

    def __init__(self, max_queue_size: int) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: defaultdict[tuple[str, str], set[asyncio.Queue[ChangeEvent]]] = (
            defaultdict(set)
        )
        self._logger = get_logger(__name__)

    @contextmanager
    def subscribe(self, table: str, task_id: str) -> Iterator[asyncio.Queue[ChangeEvent]]:
        """Register a queue for changes to `table` rows of one task."""
        key = (table, task_id)
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers[key].add(queue)
        try:
            yield queue
        finally:
            subscribers = self._subscribers.get(key)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[key]

    def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every subscriber of its table and task."""
        for queue in list(self._subscribers.get((event.table, event.task_id), ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self._logger.warning(
                    "Change feed subscriber is lagging, dropping event",
                    extra={
                        "table": event.table,
                        "operation": event.operation,
                        "task_id": event.task_id,
                    },
                )

    def subscriber_count(self, table: str, task_id: str) -> int:
        """Number of live subscribers for one table and task."""
        return len(self._subscribers.get((table, task_id), ()))
