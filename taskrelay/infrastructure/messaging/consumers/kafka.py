# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Kafka consumer built on aiokafka.

Offsets are committed automatically on a timer (auto_commit_interval_ms,
5 seconds by default) for every message handed to the engine, whether or
not its task has finished. A crash can therefore lose queued or running
tasks, and a message consumed less than one interval before a crash is
delivered again. Acknowledge and reject are no-ops.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import ConsumerStoppedError, KafkaError

from taskrelay.core.config.settings import KafkaSettings
from taskrelay.core.exceptions import TransportError
from taskrelay.infrastructure.messaging.consumers.base import Delivery, MessageConsumer
from taskrelay.infrastructure.messaging.kafka_admin import ensure_topics_exist

if TYPE_CHECKING:
    from taskrelay.infrastructure.messaging.engine import TaskEngine

logger = logging.getLogger(__name__)

RETRY_DELAY_SECONDS = 1.0


class KafkaConsumer(MessageConsumer[AIOKafkaConsumer]):
    """Consumes task envelopes from Kafka topics as part of a consumer group.

    Retriable client errors are logged and the loop resumes after a short
    pause; any other client error stops the consumer.
    """

    def __init__(
        self,
        engine: "TaskEngine[Any]",
        settings: KafkaSettings,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ) -> None:
        super().__init__(engine)
        self._settings = settings
        self._retry_delay = retry_delay

    def broker_kind(self) -> str:
        return "Kafka"

    async def _open(self) -> AIOKafkaConsumer:
        topics = self._settings.topics_list
        await ensure_topics_exist(self._settings.brokers, topics)

        consumer = AIOKafkaConsumer(
            *topics,
            bootstrap_servers=self._settings.brokers,
            group_id=self._settings.consumer_group,
            enable_auto_commit=True,
            auto_commit_interval_ms=self._settings.auto_commit_interval_ms,
            session_timeout_ms=self._settings.session_timeout_ms,
        )
        try:
            await consumer.start()
        except KafkaError as e:
            await consumer.stop()
            raise TransportError("Failed to create Kafka consumer", e) from e

        logger.info("Subscribed to Kafka topics: %s", ", ".join(topics))
        return consumer

    async def _streams(self, handle: AIOKafkaConsumer) -> list[AsyncIterator[Delivery]]:
        return [self._receive(handle)]

    async def _receive(self, consumer: AIOKafkaConsumer) -> AsyncIterator[Delivery]:
        while True:
            try:
                message = await consumer.getone()
            except ConsumerStoppedError:
                logger.info("Kafka consumer stopped")
                return
            except KafkaError as e:
                if not e.retriable:
                    raise TransportError("Fatal Kafka consumer error", e) from e
                logger.error("Kafka consumer error: %s", e)
                await asyncio.sleep(self._retry_delay)
                continue

            if message.value is None:
                logger.warning(
                    "Received message with no payload from topic %s (offset %s)",
                    message.topic,
                    message.offset,
                )
                continue

            yield Delivery(payload=message.value, source=message.topic, message=message)

    async def _disconnect(self, handle: AIOKafkaConsumer) -> None:
        await handle.stop()
