# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the task engine."""

import asyncio

import pytest

from taskrelay.core.exceptions import DecodeError
from taskrelay.core.tasks import TaskPriority
from taskrelay.infrastructure.messaging.engine import TaskEngine


async def payload_stream(*payloads):
    for payload in payloads:
        yield payload


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.mark.unit
class TestEngineSubmit:
    """Tests for submit() and ingest()."""

    @pytest.mark.asyncio
    async def test_submit_enqueues_envelope(self, handler, producer, make_envelope) -> None:
        engine = TaskEngine(handler, producer, pool_size=2)
        envelope = make_envelope(TaskPriority.HIGH)

        accepted = await engine.submit(envelope.to_json().encode())

        assert accepted == envelope
        assert len(engine.scheduler) == 1

    @pytest.mark.asyncio
    async def test_submit_rejects_malformed_payload(self, handler, producer) -> None:
        engine = TaskEngine(handler, producer, pool_size=2)

        with pytest.raises(DecodeError):
            await engine.submit(b'{"task": "nope"}')

        assert engine.scheduler.empty()
        assert engine.metrics.registry.get_sample_value("taskrelay_tasks_decode_failed_total") == 1

    @pytest.mark.asyncio
    async def test_ingest_skips_malformed_payloads(self, handler, producer, make_envelope) -> None:
        engine = TaskEngine(handler, producer, pool_size=2)
        good = [make_envelope().to_json(), make_envelope().to_json()]

        accepted = await engine.ingest(payload_stream(good[0], "garbage", good[1]))

        assert accepted == 2
        assert len(engine.scheduler) == 2


@pytest.mark.unit
class TestEngineExecution:
    """Tests for dispatching, retries and shutdown."""

    @pytest.mark.asyncio
    async def test_executes_submitted_tasks_by_priority(
        self, make_handler, producer, make_envelope
    ) -> None:
        handler = make_handler()
        engine = TaskEngine(handler, producer, pool_size=1)
        low = make_envelope(TaskPriority.LOW)
        high = make_envelope(TaskPriority.HIGH)
        normal = make_envelope(TaskPriority.NORMAL)
        for envelope in (low, high, normal):
            await engine.submit(envelope.to_json())

        engine.start()
        await wait_until(lambda: len(handler.finished) == 3)
        await engine.shutdown()

        assert handler.started == [high.id, normal.id, low.id]

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, handler, producer) -> None:
        engine = TaskEngine(handler, producer, pool_size=1)

        engine.start()
        dispatcher = engine._dispatcher
        engine.start()

        assert engine._dispatcher is dispatcher
        await engine.shutdown()
        assert engine.is_running is False

    @pytest.mark.asyncio
    async def test_failed_task_is_republished(
        self, make_handler, producer, fake_sleep, make_envelope
    ) -> None:
        """A failing task goes back to the broker with retry_count + 1 after 2s."""
        handler = make_handler(fail=True)
        engine = TaskEngine(handler, producer, pool_size=2, sleep=fake_sleep)
        envelope = make_envelope(max_retries=3)

        engine.start()
        await engine.submit(envelope.to_json())
        await wait_until(lambda: len(producer.published) == 1)
        await engine.shutdown()

        republished = producer.envelopes()[0]
        assert fake_sleep.delays == [2.0]
        assert republished.id == envelope.id
        assert republished.retry_count == 1
        assert len(engine.scheduler) == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_retries(
        self, make_handler, producer, make_envelope
    ) -> None:
        async def never(delay: float) -> None:
            await asyncio.Event().wait()

        handler = make_handler(fail=True)
        engine = TaskEngine(handler, producer, pool_size=1, sleep=never)

        engine.start()
        await engine.submit(make_envelope().to_json())
        await wait_until(lambda: engine.retry.pending == 1)
        await engine.shutdown()

        assert engine.retry.pending == 0
        assert producer.published == []

    @pytest.mark.asyncio
    async def test_shutdown_can_drain_pending_retries(
        self, make_handler, producer, make_envelope
    ) -> None:
        async def short(delay: float) -> None:
            await asyncio.sleep(0.01)

        handler = make_handler(fail=True)
        engine = TaskEngine(handler, producer, pool_size=1, sleep=short)
        envelope = make_envelope(max_retries=3)

        engine.start()
        await engine.submit(envelope.to_json())
        await wait_until(lambda: engine.retry.pending == 1)
        await engine.shutdown(drain_retries=True, timeout=1)

        assert engine.retry.pending == 0
        republished = producer.envelopes()
        assert [e.id for e in republished] == [envelope.id]
        assert republished[0].retry_count == 1

    @pytest.mark.asyncio
    async def test_shutdown_drain_timeout_cancels_retries(
        self, make_handler, producer, make_envelope
    ) -> None:
        async def never(delay: float) -> None:
            await asyncio.Event().wait()

        handler = make_handler(fail=True)
        engine = TaskEngine(handler, producer, pool_size=1, sleep=never)

        engine.start()
        await engine.submit(make_envelope().to_json())
        await wait_until(lambda: engine.retry.pending == 1)
        await engine.shutdown(drain_retries=True, timeout=0.01)

        assert engine.retry.pending == 0
        assert producer.published == []

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_running_tasks(
        self, make_handler, producer, make_envelope
    ) -> None:
        handler = make_handler(hold=True)
        engine = TaskEngine(handler, producer, pool_size=1)
        envelope = make_envelope()

        engine.start()
        await engine.submit(envelope.to_json())
        await wait_until(lambda: handler.active == 1)

        stopping = asyncio.create_task(engine.shutdown())
        await asyncio.sleep(0)
        assert not stopping.done()

        handler.release.set()
        await asyncio.wait_for(stopping, timeout=1)

        assert handler.finished == [envelope.id]

    @pytest.mark.asyncio
    async def test_shutdown_timeout_cancels_running_tasks(
        self, make_handler, producer, make_envelope
    ) -> None:
        handler = make_handler(hold=True)
        engine = TaskEngine(handler, producer, pool_size=1)

        engine.start()
        await engine.submit(make_envelope().to_json())
        await wait_until(lambda: handler.active == 1)
        await engine.shutdown(timeout=0.01)

        assert engine.pool.in_flight == 0
