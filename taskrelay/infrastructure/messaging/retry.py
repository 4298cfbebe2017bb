# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Retry scheduling with exponential backoff.

A failed envelope with retries left is copied with retry_count + 1 and,
after 2 ** retry_count seconds, published again to the broker. Nothing is
written back to the local queue; the retry comes back through the normal
consume path. Pending retries are tracked so shutdown can cancel or await
them instead of leaving detached timers behind.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from taskrelay.core.exceptions import PublishError
from taskrelay.core.tasks.envelope import TaskEnvelope
from taskrelay.core.tasks.publish import publish_envelope
from taskrelay.infrastructure.messaging.metrics import EngineMetrics
from taskrelay.utils.datetime import seconds_to_human

if TYPE_CHECKING:
    from taskrelay.infrastructure.messaging.producers.base import MessageProducer

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


def backoff_delay(retry_count: int) -> float:
    """Seconds to wait before publishing a retry.

    Args:
        retry_count: retry_count of the derived (retry) envelope.

    Returns:
        2 ** retry_count, i.e. 2, 4, 8 seconds for the first three retries.

    Raises:
        OverflowError: If the delay does not fit in a float (retry_count >= 1024).
    """
    return float(2**retry_count)


class RetryCoordinator:
    """Decides retry versus drop and owns the delayed re-publications.

    Attributes:
        destination: Destination for retries; the producer default if None.
    """

    def __init__(
        self,
        producer: "MessageProducer",
        destination: str | None = None,
        metrics: EngineMetrics | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the coordinator.

        Args:
            producer: Producer used for re-publication.
            destination: Destination for retries (default: producer default).
            metrics: Optional engine metrics.
            sleep: Awaitable delay function, replaceable for testing.
        """
        self.destination = destination
        self._producer = producer
        self._metrics = metrics
        self._sleep = sleep
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of retries waiting to be published."""
        return len(self._pending)

    async def on_failure(
        self,
        envelope: TaskEnvelope[Any],
        error: Exception,
    ) -> TaskEnvelope[Any] | None:
        """Handle a failed execution.

        Args:
            envelope: Envelope whose handler failed.
            error: Exception raised by the handler.

        Returns:
            The derived retry envelope, or None if the task was dropped.
        """
        if not envelope.should_retry():
            logger.error(
                "Task %s exceeded max retries (%d), dropping: %s",
                envelope.id,
                envelope.max_retries,
                error,
            )
            if self._metrics is not None:
                self._metrics.tasks_dropped.inc()
            return None

        retry_envelope = envelope.next_retry()
        try:
            delay = backoff_delay(retry_envelope.retry_count)
        except OverflowError:
            logger.error(
                "Task %s backoff for retry %d is out of range, dropping: %s",
                envelope.id,
                retry_envelope.retry_count,
                error,
            )
            if self._metrics is not None:
                self._metrics.tasks_dropped.inc()
            return None

        logger.warning(
            "Task %s will be retried (attempt %d/%d) in %s",
            retry_envelope.id,
            retry_envelope.retry_count,
            retry_envelope.max_retries,
            seconds_to_human(delay),
        )

        task = asyncio.create_task(
            self._republish_later(retry_envelope, delay),
            name=f"retry-{retry_envelope.id}-{retry_envelope.retry_count}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        if self._metrics is not None:
            self._metrics.tasks_retried.inc()
        return retry_envelope

    async def cancel_pending(self) -> int:
        """Cancel every retry still waiting out its delay.

        Returns:
            Number of retries cancelled.
        """
        tasks = [task for task in self._pending if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning("Cancelled %d pending retries", len(tasks))
        return len(tasks)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for pending retries to be published.

        Args:
            timeout: Maximum seconds to wait, or None to wait indefinitely.

        Returns:
            True if no retry remains pending.
        """
        if not self._pending:
            return True
        _, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        return not pending

    async def _republish_later(self, envelope: TaskEnvelope[Any], delay: float) -> None:
        await self._sleep(delay)

        try:
            await publish_envelope(self._producer, envelope, self.destination)
        except PublishError as e:
            logger.error("Failed to republish task %s for retry: %s", envelope.id, e)
            self._count_republish_failure()
            return
        except Exception as e:
            logger.exception("Unexpected error republishing task %s: %s", envelope.id, e)
            self._count_republish_failure()
            return

        logger.info(
            "Task %s republished for retry %d/%d",
            envelope.id,
            envelope.retry_count,
            envelope.max_retries,
        )

    def _count_republish_failure(self) -> None:
        if self._metrics is not None:
            self._metrics.republish_failed.inc()
