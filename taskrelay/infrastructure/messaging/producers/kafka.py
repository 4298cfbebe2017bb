# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Kafka producer built on aiokafka."""

import asyncio
import logging

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from taskrelay.core.config.settings import KafkaSettings
from taskrelay.core.exceptions import PublishError
from taskrelay.infrastructure.messaging.producers.base import MessageProducer

logger = logging.getLogger(__name__)

# Every envelope shares one key, so all tasks land in the same partition
MESSAGE_KEY = b"default"


class KafkaProducer(MessageProducer):
    """Publishes task envelopes to Kafka topics.

    Example:
        producer = KafkaProducer(get_settings().kafka)
        await producer.connect()
        await producer.publish(envelope.to_json(), "emails")
    """

    def __init__(self, settings: KafkaSettings) -> None:
        super().__init__(settings.default_topic)
        self._settings = settings
        self._producer: AIOKafkaProducer | None = None

    @property
    def is_connected(self) -> bool:
        return self._producer is not None

    def broker_kind(self) -> str:
        return "Kafka"

    async def connect(self) -> None:
        if self._producer is not None:
            return

        producer = AIOKafkaProducer(
            bootstrap_servers=self._settings.brokers,
            request_timeout_ms=self._settings.message_timeout_ms,
        )
        try:
            await producer.start()
        except KafkaError as e:
            await producer.stop()
            raise PublishError("Failed to create Kafka producer", e) from e

        self._producer = producer
        logger.info("Kafka producer connected to %s", self._settings.brokers)

    async def publish(self, payload: str, destination: str | None = None) -> None:
        self._ensure_connected()
        topic = self.resolve_destination(destination)
        event_id = self.extract_event_id(payload)
        timeout = self._settings.message_timeout_ms / 1000

        try:
            metadata = await asyncio.wait_for(
                self._producer.send_and_wait(
                    topic,
                    value=payload.encode("utf-8"),
                    key=MESSAGE_KEY,
                ),
                timeout=timeout,
            )
        except (KafkaError, asyncio.TimeoutError) as e:
            logger.error("Failed to publish event %s to topic %s: %s", event_id, topic, e)
            raise PublishError(f"Failed to publish to Kafka topic {topic}", e) from e

        logger.info(
            "Published event %s to topic %s (partition %s, offset %s)",
            event_id,
            topic,
            metadata.partition,
            metadata.offset,
        )

    async def close(self) -> None:
        if self._producer is None:
            return
        producer, self._producer = self._producer, None
        await producer.stop()
        logger.info("Kafka producer closed")
