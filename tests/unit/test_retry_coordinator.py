# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for retry scheduling and exponential backoff."""

import asyncio

import pytest

from taskrelay.core.tasks import TaskPriority
from taskrelay.infrastructure.messaging.retry import RetryCoordinator, backoff_delay


@pytest.mark.unit
class TestBackoffDelay:
    """Tests for the backoff formula."""

    @pytest.mark.parametrize(("retry_count", "delay"), [(1, 2.0), (2, 4.0), (3, 8.0), (10, 1024.0)])
    def test_power_of_two(self, retry_count: int, delay: float) -> None:
        assert backoff_delay(retry_count) == delay

    def test_out_of_range_raises_overflow(self) -> None:
        with pytest.raises(OverflowError):
            backoff_delay(1024)


@pytest.mark.unit
class TestRetryCoordinator:
    """Tests for RetryCoordinator.on_failure."""

    @pytest.mark.asyncio
    async def test_schedules_single_republish(self, producer, fake_sleep, make_envelope) -> None:
        """A failure with retries left republishes one derived envelope after 2s."""
        coordinator = RetryCoordinator(producer, sleep=fake_sleep)
        envelope = make_envelope(TaskPriority.HIGH, retry_count=0, max_retries=3)

        derived = await coordinator.on_failure(envelope, RuntimeError("boom"))
        await coordinator.drain()

        assert derived is not None
        assert derived.retry_count == 1
        assert fake_sleep.delays == [2.0]

        [(destination, payload)] = producer.published
        republished = producer.envelopes()[0]
        assert destination == "tasks"
        assert republished.retry_count == 1
        assert republished.id == envelope.id
        assert republished.task == envelope.task
        assert republished.created_at == envelope.created_at
        assert republished.priority == envelope.priority
        assert republished.max_retries == envelope.max_retries

    @pytest.mark.asyncio
    async def test_backoff_sequence_until_exhaustion(self, producer, fake_sleep, make_envelope) -> None:
        """A task that always fails is retried after 2, 4 and 8 seconds, then dropped."""
        coordinator = RetryCoordinator(producer, sleep=fake_sleep)
        envelope = make_envelope(max_retries=3)

        while envelope is not None:
            envelope = await coordinator.on_failure(envelope, RuntimeError("always"))
            await coordinator.drain()

        assert fake_sleep.delays == [2.0, 4.0, 8.0]
        assert [e.retry_count for e in producer.envelopes()] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_exhausted_task_is_dropped(self, producer, fake_sleep, make_envelope, metrics) -> None:
        coordinator = RetryCoordinator(producer, metrics=metrics, sleep=fake_sleep)
        envelope = make_envelope(retry_count=3, max_retries=3)

        result = await coordinator.on_failure(envelope, RuntimeError("boom"))

        assert result is None
        assert coordinator.pending == 0
        assert producer.published == []
        assert metrics.registry.get_sample_value("taskrelay_tasks_dropped_total") == 1

    @pytest.mark.asyncio
    async def test_out_of_range_backoff_is_dropped(
        self, producer, fake_sleep, make_envelope, metrics
    ) -> None:
        coordinator = RetryCoordinator(producer, metrics=metrics, sleep=fake_sleep)
        envelope = make_envelope(retry_count=1023, max_retries=2000)

        result = await coordinator.on_failure(envelope, RuntimeError("boom"))

        assert result is None
        assert coordinator.pending == 0
        assert producer.published == []
        assert metrics.registry.get_sample_value("taskrelay_tasks_dropped_total") == 1

    @pytest.mark.asyncio
    async def test_zero_max_retries_never_republishes(self, producer, fake_sleep, make_envelope) -> None:
        coordinator = RetryCoordinator(producer, sleep=fake_sleep)

        assert await coordinator.on_failure(make_envelope(max_retries=0), RuntimeError()) is None
        assert producer.published == []

    @pytest.mark.asyncio
    async def test_publish_failure_is_absorbed(
        self, failing_producer, fake_sleep, make_envelope, metrics
    ) -> None:
        coordinator = RetryCoordinator(failing_producer, metrics=metrics, sleep=fake_sleep)

        await coordinator.on_failure(make_envelope(), RuntimeError("boom"))
        assert await coordinator.drain() is True

        assert metrics.registry.get_sample_value("taskrelay_republish_failed_total") == 1

    @pytest.mark.asyncio
    async def test_explicit_destination(self, producer, fake_sleep, make_envelope) -> None:
        coordinator = RetryCoordinator(producer, destination="emails", sleep=fake_sleep)

        await coordinator.on_failure(make_envelope(), RuntimeError("boom"))
        await coordinator.drain()

        assert producer.published[0][0] == "emails"


@pytest.mark.unit
class TestPendingRetries:
    """Tests for the pending retry registry."""

    @pytest.mark.asyncio
    async def test_cancel_pending(self, producer, make_envelope) -> None:
        """Cancelled retries are never published."""
        blocked = asyncio.Event()

        async def never_wakes(delay: float) -> None:
            await blocked.wait()

        coordinator = RetryCoordinator(producer, sleep=never_wakes)
        await coordinator.on_failure(make_envelope(), RuntimeError("a"))
        await coordinator.on_failure(make_envelope(), RuntimeError("b"))
        await asyncio.sleep(0)

        assert coordinator.pending == 2

        cancelled = await coordinator.cancel_pending()

        assert cancelled == 2
        assert coordinator.pending == 0
        assert producer.published == []

    @pytest.mark.asyncio
    async def test_drain_times_out(self, producer, make_envelope) -> None:
        async def slow(delay: float) -> None:
            await asyncio.sleep(3600)

        coordinator = RetryCoordinator(producer, sleep=slow)
        await coordinator.on_failure(make_envelope(), RuntimeError("a"))

        assert await coordinator.drain(timeout=0.01) is False

        await coordinator.cancel_pending()
