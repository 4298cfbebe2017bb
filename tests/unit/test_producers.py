# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for broker producers and publish helpers."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import aio_pika
import pytest
import pytest_asyncio
from aiokafka.errors import KafkaTimeoutError
from redis.exceptions import RedisError

from taskrelay.core.config.settings import KafkaSettings, RabbitMQSettings, RedisSettings
from taskrelay.core.exceptions import PublishError
from taskrelay.core.tasks import SendEmail, TaskPriority, publish_task
from taskrelay.infrastructure.messaging.producers import (
    KafkaProducer,
    MessageProducer,
    RabbitMQProducer,
    RedisProducer,
)


@pytest.mark.unit
class TestExtractEventId:
    """Tests for MessageProducer.extract_event_id."""

    def test_reads_id(self, sample_email_envelope) -> None:
        payload = sample_email_envelope.to_json()

        assert MessageProducer.extract_event_id(payload) == sample_email_envelope.id

    @pytest.mark.parametrize("payload", ["not json", "[1, 2]", '{"task": {}}'])
    def test_unknown_when_missing(self, payload: str) -> None:
        assert MessageProducer.extract_event_id(payload) == "unknown"


@pytest.mark.unit
class TestPublishTask:
    """Tests for the publish_task helper."""

    @pytest.mark.asyncio
    async def test_wraps_task_in_fresh_envelope(self, producer) -> None:
        task = SendEmail(to="a@example.com", subject="Hi")

        envelope = await publish_task(
            producer,
            task,
            priority=TaskPriority.HIGH,
            destination="emails",
            max_retries=5,
        )

        [(destination, _)] = producer.published
        published = producer.envelopes()[0]
        assert destination == "emails"
        assert published == envelope
        assert published.retry_count == 0
        assert published.max_retries == 5
        assert published.priority == TaskPriority.HIGH

    @pytest.mark.asyncio
    async def test_propagates_publish_error(self, failing_producer) -> None:
        with pytest.raises(PublishError):
            await publish_task(failing_producer, SendEmail(to="a@example.com", subject="Hi"))


@pytest.mark.unit
class TestRedisProducer:
    """Tests for RedisProducer."""

    @pytest.fixture
    def client(self) -> MagicMock:
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        client.publish = AsyncMock(return_value=1)
        client.aclose = AsyncMock()
        return client

    @pytest_asyncio.fixture
    async def redis_producer(self, client):
        with patch(
            "taskrelay.infrastructure.messaging.producers.redis.Redis.from_url",
            return_value=client,
        ):
            producer = RedisProducer(RedisSettings())
            await producer.connect()
            yield producer
            await producer.close()

    @pytest.mark.asyncio
    async def test_publish_before_connect_fails(self) -> None:
        producer = RedisProducer(RedisSettings())

        with pytest.raises(PublishError, match="not connected"):
            await producer.publish("{}")

    @pytest.mark.asyncio
    async def test_publishes_to_default_channel(self, redis_producer, client) -> None:
        await redis_producer.publish('{"id": "t-1"}')

        client.publish.assert_awaited_once_with("tasks", '{"id": "t-1"}')

    @pytest.mark.asyncio
    async def test_no_subscribers_is_not_an_error(self, redis_producer, client) -> None:
        client.publish.return_value = 0

        await redis_producer.publish('{"id": "t-1"}', "emails")

        client.publish.assert_awaited_once_with("emails", '{"id": "t-1"}')

    @pytest.mark.asyncio
    async def test_redis_error_becomes_publish_error(self, redis_producer, client) -> None:
        client.publish.side_effect = RedisError("down")

        with pytest.raises(PublishError) as exc_info:
            await redis_producer.publish('{"id": "t-1"}')

        assert isinstance(exc_info.value.original_error, RedisError)


@pytest.mark.unit
class TestRabbitMQProducer:
    """Tests for RabbitMQProducer."""

    @pytest.mark.asyncio
    async def test_publishes_persistent_json(self) -> None:
        channel = MagicMock()
        channel.declare_queue = AsyncMock()
        channel.default_exchange.publish = AsyncMock()
        connection = MagicMock()
        connection.channel = AsyncMock(return_value=channel)
        connection.close = AsyncMock()

        with patch(
            "taskrelay.infrastructure.messaging.producers.rabbitmq.aio_pika.connect_robust",
            AsyncMock(return_value=connection),
        ):
            producer = RabbitMQProducer(RabbitMQSettings())
            await producer.connect()

        await producer.publish('{"id": "t-1"}')
        await producer.publish('{"id": "t-2"}')
        await producer.close()

        connection.channel.assert_awaited_once_with(publisher_confirms=True)
        channel.declare_queue.assert_awaited_once_with("tasks", durable=True)
        assert channel.default_exchange.publish.await_count == 2

        message = channel.default_exchange.publish.await_args_list[0].args[0]
        assert message.body == b'{"id": "t-1"}'
        assert message.content_type == "application/json"
        assert message.delivery_mode == aio_pika.DeliveryMode.PERSISTENT
        assert channel.default_exchange.publish.await_args_list[0].kwargs["routing_key"] == "tasks"
        connection.close.assert_awaited_once()


@pytest.mark.unit
class TestKafkaProducer:
    """Tests for KafkaProducer."""

    @pytest.fixture
    def client(self) -> MagicMock:
        client = MagicMock()
        client.start = AsyncMock()
        client.stop = AsyncMock()
        client.send_and_wait = AsyncMock(return_value=SimpleNamespace(partition=0, offset=12))
        return client

    @pytest_asyncio.fixture
    async def kafka_producer(self, client):
        with patch(
            "taskrelay.infrastructure.messaging.producers.kafka.AIOKafkaProducer",
            return_value=client,
        ):
            producer = KafkaProducer(KafkaSettings())
            await producer.connect()
            yield producer
            await producer.close()

    @pytest.mark.asyncio
    async def test_sends_with_default_key(self, kafka_producer, client) -> None:
        await kafka_producer.publish('{"id": "t-1"}', "emails")

        client.send_and_wait.assert_awaited_once_with(
            "emails",
            value=b'{"id": "t-1"}',
            key=b"default",
        )

    @pytest.mark.asyncio
    async def test_kafka_error_becomes_publish_error(self, kafka_producer, client) -> None:
        client.send_and_wait.side_effect = KafkaTimeoutError()

        with pytest.raises(PublishError):
            await kafka_producer.publish('{"id": "t-1"}')
