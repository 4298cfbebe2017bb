# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""RabbitMQ consumer built on aio-pika.

Each configured queue is declared durable and consumed by its own stream;
all streams feed the same engine. Well-formed messages are acknowledged as
soon as they are queued locally, before their task runs. Malformed messages
are rejected without requeue.

The channel prefetch (RABBITMQ_PREFETCH_COUNT) bounds unacknowledged
deliveries per channel; because acknowledgement happens at enqueue time it
does not bound the local queue.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractQueue, AbstractRobustConnection
from aio_pika.exceptions import AMQPException

from taskrelay.core.config.settings import RabbitMQSettings
from taskrelay.core.exceptions import TransportError
from taskrelay.infrastructure.messaging.consumers.base import Delivery, MessageConsumer

if TYPE_CHECKING:
    from taskrelay.infrastructure.messaging.engine import TaskEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RabbitMQHandle:
    """Open RabbitMQ connection and the channel consumed from."""

    connection: AbstractRobustConnection
    channel: AbstractChannel


class RabbitMQConsumer(MessageConsumer[RabbitMQHandle]):
    """Consumes task envelopes from one or more durable RabbitMQ queues."""

    def __init__(self, engine: "TaskEngine[Any]", settings: RabbitMQSettings) -> None:
        super().__init__(engine)
        self._settings = settings

    def broker_kind(self) -> str:
        return "RabbitMQ"

    async def _open(self) -> RabbitMQHandle:
        try:
            connection = await aio_pika.connect_robust(self._settings.url)
        except (AMQPException, OSError) as e:
            raise TransportError("Failed to connect to RabbitMQ", e) from e

        try:
            channel = await connection.channel()
            await channel.set_qos(prefetch_count=self._settings.prefetch_count)
        except AMQPException as e:
            await connection.close()
            raise TransportError("Failed to open RabbitMQ channel", e) from e

        logger.info("RabbitMQ QoS set to prefetch_count=%d", self._settings.prefetch_count)
        return RabbitMQHandle(connection=connection, channel=channel)

    async def _streams(self, handle: RabbitMQHandle) -> list[AsyncIterator[Delivery]]:
        queues = []
        for name in self._settings.queues_list:
            try:
                queue = await handle.channel.declare_queue(name, durable=True)
            except AMQPException as e:
                raise TransportError(f"Failed to declare queue: {name}", e) from e
            logger.info("Queue '%s' declared", name)
            queues.append(queue)

        return [self._receive(queue) for queue in queues]

    async def _receive(self, queue: AbstractQueue) -> AsyncIterator[Delivery]:
        try:
            async with queue.iterator(consumer_tag=f"consumer-{queue.name}") as messages:
                async for message in messages:
                    yield Delivery(payload=message.body, source=queue.name, message=message)
        except AMQPException as e:
            logger.error("Consumer stream for queue '%s' failed: %s", queue.name, e)
            return
        logger.info("Consumer stream for queue '%s' ended", queue.name)

    async def ack(self, delivery: Delivery) -> None:
        await delivery.message.ack()

    async def reject(self, delivery: Delivery) -> None:
        await delivery.message.reject(requeue=False)

    async def _disconnect(self, handle: RabbitMQHandle) -> None:
        await handle.channel.close()
        await handle.connection.close()
