# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Bounded pool executing task envelopes concurrently.

At most `capacity` handler executions run at once. A slot is taken before
an envelope leaves the priority queue and is released as soon as the
handler call returns or raises, so a failing task never leaks capacity.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from taskrelay.core.tasks.envelope import TaskEnvelope
from taskrelay.core.tasks.handler import TaskHandler, task_type_name
from taskrelay.infrastructure.messaging.metrics import EngineMetrics
from taskrelay.infrastructure.messaging.scheduler import PriorityScheduler

logger = logging.getLogger(__name__)

# Called with the failed envelope and the handler's exception
FailureCallback = Callable[[TaskEnvelope[Any], Exception], Awaitable[Any]]


class WorkerPool:
    """Runs a task handler under a semaphore-based admission limit.

    Attributes:
        capacity: Maximum number of concurrent handler executions.
    """

    def __init__(
        self,
        handler: TaskHandler[Any],
        capacity: int,
        on_failure: FailureCallback | None = None,
        metrics: EngineMetrics | None = None,
    ) -> None:
        """Initialize the pool.

        Args:
            handler: Handler executing each envelope.
            capacity: Maximum concurrent executions (at least 1).
            on_failure: Awaited after a handler failure, once the slot is free.
            metrics: Optional engine metrics.

        Raises:
            ValueError: If capacity is lower than 1.
        """
        if capacity < 1:
            raise ValueError(f"Worker pool capacity must be at least 1, got {capacity}")

        self.capacity = capacity
        self._handler = handler
        self._on_failure = on_failure
        self._metrics = metrics
        self._slots = asyncio.Semaphore(capacity)
        self._running = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        """Number of handler executions currently running."""
        return self._running

    @property
    def tasks(self) -> frozenset[asyncio.Task[None]]:
        """Execution tasks that have not finished yet."""
        return frozenset(self._tasks)

    async def dispatch(self, envelope: TaskEnvelope[Any]) -> asyncio.Task[None]:
        """Wait for a free slot and start executing an envelope.

        Args:
            envelope: Envelope to execute.

        Returns:
            The asyncio task running the handler.
        """
        await self._slots.acquire()
        return self._start(envelope)

    async def run(self, scheduler: PriorityScheduler[Any]) -> None:
        """Dispatch envelopes from a scheduler until cancelled.

        A slot is reserved before dequeuing, so an envelope is only removed
        from the queue once it can start immediately.

        Args:
            scheduler: Queue to take envelopes from.
        """
        logger.info("Worker pool started with %d workers", self.capacity)
        try:
            while True:
                await self._slots.acquire()
                try:
                    envelope = await scheduler.get()
                except BaseException:
                    self._slots.release()
                    raise
                logger.debug(
                    "Dispatching task %s with priority %s",
                    envelope.id,
                    envelope.priority.value,
                )
                self._start(envelope)
        finally:
            logger.info("Worker pool dispatcher stopped")

    async def join(self, timeout: float | None = None) -> bool:
        """Wait for running executions to finish.

        Args:
            timeout: Maximum seconds to wait, or None to wait indefinitely.

        Returns:
            True if every execution finished, False on timeout.
        """
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("%d task executions still running after %ss", len(pending), timeout)
        return not pending

    async def cancel(self) -> int:
        """Cancel running executions and wait for them to unwind.

        Returns:
            Number of executions cancelled.
        """
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning("Cancelled %d running task executions", len(tasks))
        return len(tasks)

    def _start(self, envelope: TaskEnvelope[Any]) -> asyncio.Task[None]:
        self._running += 1
        if self._metrics is not None:
            self._metrics.in_flight.inc()
        task = asyncio.create_task(self._execute(envelope), name=f"task-{envelope.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _execute(self, envelope: TaskEnvelope[Any]) -> None:
        task_name = task_type_name(envelope.task)
        started = time.perf_counter()
        error: Exception | None = None

        try:
            await self._handler.handle(envelope)
        except Exception as e:
            error = e
        finally:
            self._running -= 1
            self._slots.release()
            if self._metrics is not None:
                self._metrics.in_flight.dec()
                self._metrics.task_duration.labels(task_type=task_name).observe(
                    time.perf_counter() - started
                )

        if error is None:
            logger.info("Task %s completed successfully", envelope.id)
            if self._metrics is not None:
                self._metrics.tasks_completed.labels(task_type=task_name).inc()
            return

        logger.error("Task %s failed: %s", envelope.id, error)
        if self._metrics is not None:
            self._metrics.tasks_failed.labels(
                task_type=task_name,
                exception_type=type(error).__name__,
            ).inc()

        if self._on_failure is not None:
            try:
                await self._on_failure(envelope, error)
            except Exception as e:
                logger.exception("Failure callback raised for task %s: %s", envelope.id, e)
