# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Task engine: priority queue, worker pool and retry coordination.

The engine is broker-agnostic. Broker consumers feed it raw payloads through
submit() (or ingest() for a whole stream); a dispatcher task moves envelopes
from the priority queue into the bounded worker pool; failed executions are
handed to the retry coordinator, which republishes them through a producer.

Example:
    engine = TaskEngine(router, producer, pool_size=10)
    engine.start()
    await engine.submit(raw_payload)
    ...
    await engine.shutdown()
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, AsyncIterable, Generic

from taskrelay.core.exceptions import DecodeError
from taskrelay.core.tasks.envelope import TaskEnvelope, TaskEvent, TaskT
from taskrelay.core.tasks.handler import TaskHandler
from taskrelay.infrastructure.messaging.metrics import EngineMetrics
from taskrelay.infrastructure.messaging.retry import RetryCoordinator, SleepFunc
from taskrelay.infrastructure.messaging.scheduler import PriorityScheduler
from taskrelay.infrastructure.messaging.worker_pool import WorkerPool

if TYPE_CHECKING:
    from taskrelay.infrastructure.messaging.producers.base import MessageProducer

logger = logging.getLogger(__name__)


class TaskEngine(Generic[TaskT]):
    """Owns the scheduling and execution machinery for one worker process.

    Attributes:
        scheduler: Priority queue of accepted envelopes.
        pool: Bounded worker pool executing envelopes.
        retry: Coordinator republishing failed envelopes.
        metrics: Engine metrics.
    """

    def __init__(
        self,
        handler: TaskHandler[TaskT],
        producer: "MessageProducer",
        pool_size: int,
        envelope_type: type[TaskEnvelope[Any]] = TaskEvent,
        retry_destination: str | None = None,
        metrics: EngineMetrics | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            handler: Handler executing each envelope.
            producer: MessageProducer used to republish retries.
            pool_size: Maximum concurrent handler executions.
            envelope_type: Envelope model used to decode payloads.
            retry_destination: Destination for retries (default: producer default).
            metrics: Engine metrics (default: a fresh private set).
            sleep: Delay function used for retry backoff.
        """
        self.metrics = metrics or EngineMetrics()
        self.scheduler: PriorityScheduler[TaskT] = PriorityScheduler(self.metrics)
        self.retry = RetryCoordinator(
            producer,
            destination=retry_destination,
            metrics=self.metrics,
            sleep=sleep,
        )
        self.pool = WorkerPool(
            handler,
            pool_size,
            on_failure=self.retry.on_failure,
            metrics=self.metrics,
        )
        self._envelope_type = envelope_type
        self._dispatcher: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Check whether the dispatcher is active."""
        return self._dispatcher is not None and not self._dispatcher.done()

    def decode(self, raw: str | bytes) -> TaskEnvelope[TaskT]:
        """Decode a raw payload into an envelope.

        Raises:
            DecodeError: If the payload is not a valid envelope.
        """
        try:
            return self._envelope_type.from_json(raw)
        except DecodeError:
            self.metrics.decode_failed.inc()
            raise

    async def submit(self, raw: str | bytes) -> TaskEnvelope[TaskT]:
        """Decode a raw payload and enqueue it for execution.

        Args:
            raw: Serialized envelope as received from a broker.

        Returns:
            The accepted envelope.

        Raises:
            DecodeError: If the payload is not a valid envelope. Nothing is
                enqueued in that case.
        """
        envelope = self.decode(raw)
        await self.scheduler.push(envelope)
        self.metrics.tasks_received.labels(priority=envelope.priority.value).inc()
        logger.debug(
            "Queued task %s with priority %s (queue depth: %d)",
            envelope.id,
            envelope.priority.value,
            len(self.scheduler),
        )
        return envelope

    async def ingest(self, payloads: AsyncIterable[str | bytes]) -> int:
        """Submit every payload of a stream until it ends.

        Malformed payloads are logged and skipped.

        Args:
            payloads: Async iterable of raw payloads.

        Returns:
            Number of payloads accepted.
        """
        accepted = 0
        async for raw in payloads:
            try:
                await self.submit(raw)
            except DecodeError as e:
                logger.error("Skipping malformed task payload: %s", e)
                continue
            accepted += 1
        return accepted

    def start(self) -> None:
        """Start dispatching queued envelopes to the worker pool.

        Must be called from a running event loop. Calling it again while the
        engine runs has no effect.
        """
        if self.is_running:
            return
        self._dispatcher = asyncio.create_task(
            self.pool.run(self.scheduler),
            name="taskrelay-dispatcher",
        )
        logger.info("Task engine started (pool size: %d)", self.pool.capacity)

    async def shutdown(
        self,
        drain: bool = True,
        timeout: float | None = None,
        drain_retries: bool = False,
    ) -> None:
        """Stop dispatching and wind down in-flight work.

        With drain set, running executions are awaited (up to `timeout`,
        then cancelled); otherwise they are cancelled right away. Pending
        retries are cancelled unless drain_retries is set, in which case
        they are awaited under the same timeout.

        Args:
            drain: Wait for running executions before cancelling them.
            timeout: Maximum seconds to wait for each phase.
            drain_retries: Publish pending retries instead of cancelling them.
        """
        logger.info("Shutting down task engine...")

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            await asyncio.gather(self._dispatcher, return_exceptions=True)
            self._dispatcher = None

        if not drain or not await self.pool.join(timeout):
            await self.pool.cancel()

        retries_done = drain_retries and await self.retry.drain(timeout)
        if not retries_done:
            await self.retry.cancel_pending()

        if not self.scheduler.empty():
            logger.warning("%d queued tasks were not executed", len(self.scheduler))

        logger.info("Task engine stopped")
