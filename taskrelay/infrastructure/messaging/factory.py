# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Broker selection from settings."""

import logging
from typing import Any

from taskrelay.core.config.settings import Settings
from taskrelay.infrastructure.messaging.consumers import (
    KafkaConsumer,
    MessageConsumer,
    RabbitMQConsumer,
    RedisConsumer,
)
from taskrelay.infrastructure.messaging.engine import TaskEngine
from taskrelay.infrastructure.messaging.producers import (
    KafkaProducer,
    MessageProducer,
    RabbitMQProducer,
    RedisProducer,
)

logger = logging.getLogger(__name__)


def _require_broker(settings: Settings) -> str:
    if settings.message_broker is None:
        raise ValueError(
            "MESSAGE_BROKER is not set or not recognised (expected kafka, redis or rabbitmq)"
        )
    return settings.message_broker


def create_consumer(settings: Settings, engine: TaskEngine[Any]) -> MessageConsumer[Any]:
    """Build the consumer for the configured broker.

    The consumer is returned disconnected; call connect() before run().

    Raises:
        ValueError: If no supported broker is configured.
    """
    broker = _require_broker(settings)
    logger.info("Initializing %s consumer", broker)

    if broker == "kafka":
        return KafkaConsumer(engine, settings.kafka)
    if broker == "rabbitmq":
        return RabbitMQConsumer(engine, settings.rabbitmq)
    return RedisConsumer(engine, settings.redis)


async def create_producer(settings: Settings) -> MessageProducer:
    """Build and connect the producer for the configured broker.

    Raises:
        ValueError: If no supported broker is configured.
        PublishError: If the producer cannot connect.
    """
    broker = _require_broker(settings)

    producer: MessageProducer
    if broker == "kafka":
        producer = KafkaProducer(settings.kafka)
    elif broker == "rabbitmq":
        producer = RabbitMQProducer(settings.rabbitmq)
    else:
        producer = RedisProducer(settings.redis)

    await producer.connect()
    return producer
