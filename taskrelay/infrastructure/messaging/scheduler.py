# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared priority queue ordering task envelopes for execution.

Ordering: higher priority first; on equal priority the envelope created
earlier wins, so a retried envelope keeps its seniority over newer arrivals.
Envelopes with identical keys come out in insertion order.

The queue is unbounded and does not deduplicate by envelope id. The lock is
held only for the heap operation itself, never across task execution.
"""

import asyncio
import heapq
import itertools
from datetime import datetime
from typing import Any, Generic

from taskrelay.core.tasks.envelope import TaskEnvelope, TaskT
from taskrelay.infrastructure.messaging.metrics import EngineMetrics

# (negated priority rank, created_at, insertion sequence, envelope)
_HeapEntry = tuple[int, datetime, int, TaskEnvelope[Any]]


def sort_key(envelope: TaskEnvelope[Any]) -> tuple[int, datetime]:
    """Ordering key of an envelope; smaller keys are dequeued first."""
    return (-envelope.priority.rank, envelope.created_at)


class PriorityScheduler(Generic[TaskT]):
    """Lock-protected max-priority queue of task envelopes.

    Consumers either poll with pop() or wait with get(), which is woken by
    the next push() instead of sleeping and retrying.

    Example:
        scheduler = PriorityScheduler()
        await scheduler.push(envelope)
        envelope = await scheduler.get()
    """

    def __init__(self, metrics: EngineMetrics | None = None) -> None:
        """Initialize an empty queue.

        Args:
            metrics: Optional metrics updated with the queue depth.
        """
        self._heap: list[_HeapEntry] = []
        self._sequence = itertools.count()
        self._lock = asyncio.Lock()
        self._not_empty = asyncio.Condition(self._lock)
        self._metrics = metrics

    def __len__(self) -> int:
        return len(self._heap)

    def empty(self) -> bool:
        """Check whether no envelope is queued."""
        return not self._heap

    async def push(self, envelope: TaskEnvelope[TaskT]) -> None:
        """Insert an envelope in O(log n) and wake one waiting consumer.

        Args:
            envelope: Envelope to enqueue.
        """
        async with self._not_empty:
            self._insert(envelope)
            self._not_empty.notify()

    async def pop(self) -> TaskEnvelope[TaskT] | None:
        """Remove and return the highest-ordered envelope.

        Returns:
            The envelope, or None when the queue is empty.
        """
        async with self._lock:
            if not self._heap:
                return None
            return self._remove()

    async def get(self) -> TaskEnvelope[TaskT]:
        """Wait for an envelope and remove it from the queue.

        Returns:
            The highest-ordered envelope once one is available.
        """
        async with self._not_empty:
            await self._not_empty.wait_for(lambda: bool(self._heap))
            return self._remove()

    def _insert(self, envelope: TaskEnvelope[TaskT]) -> None:
        priority_key, created_at = sort_key(envelope)
        heapq.heappush(
            self._heap,
            (priority_key, created_at, next(self._sequence), envelope),
        )
        self._update_depth()

    def _remove(self) -> TaskEnvelope[TaskT]:
        entry = heapq.heappop(self._heap)
        self._update_depth()
        return entry[-1]

    def _update_depth(self) -> None:
        if self._metrics is not None:
            self._metrics.queue_depth.set(len(self._heap))
