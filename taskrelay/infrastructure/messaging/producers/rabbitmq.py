# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""RabbitMQ producer built on aio-pika.

Messages go through the default exchange with the queue name as routing key.
The channel runs with publisher confirms, so publish() returns only once the
broker has accepted the message.
"""

import logging

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractRobustConnection
from aio_pika.exceptions import AMQPException

from taskrelay.core.config.settings import RabbitMQSettings
from taskrelay.core.exceptions import PublishError
from taskrelay.infrastructure.messaging.producers.base import MessageProducer

logger = logging.getLogger(__name__)


class RabbitMQProducer(MessageProducer):
    """Publishes persistent task messages to durable RabbitMQ queues."""

    def __init__(self, settings: RabbitMQSettings) -> None:
        super().__init__(settings.default_queue)
        self._settings = settings
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._declared: set[str] = set()

    @property
    def is_connected(self) -> bool:
        return self._channel is not None

    def broker_kind(self) -> str:
        return "RabbitMQ"

    async def connect(self) -> None:
        if self._channel is not None:
            return

        try:
            self._connection = await aio_pika.connect_robust(self._settings.url)
            self._channel = await self._connection.channel(publisher_confirms=True)
        except (AMQPException, OSError) as e:
            raise PublishError("Failed to connect to RabbitMQ", e) from e

        logger.info("RabbitMQ producer connected")

    async def publish(self, payload: str, destination: str | None = None) -> None:
        self._ensure_connected()
        queue_name = self.resolve_destination(destination)
        event_id = self.extract_event_id(payload)

        message = aio_pika.Message(
            body=payload.encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )

        try:
            if queue_name not in self._declared:
                await self._channel.declare_queue(queue_name, durable=True)
                self._declared.add(queue_name)
            await self._channel.default_exchange.publish(message, routing_key=queue_name)
        except AMQPException as e:
            logger.error("Failed to publish event %s to queue %s: %s", event_id, queue_name, e)
            raise PublishError(f"Failed to publish to RabbitMQ queue {queue_name}", e) from e

        logger.info("Published event %s to queue %s", event_id, queue_name)

    async def close(self) -> None:
        if self._connection is None:
            return
        connection, self._connection, self._channel = self._connection, None, None
        self._declared.clear()
        await connection.close()
        logger.info("RabbitMQ producer closed")
