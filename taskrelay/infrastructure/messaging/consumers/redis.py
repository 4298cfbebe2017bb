# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis Pub/Sub consumer.

Pub/Sub offers no acknowledgement and no redelivery: messages published
while the worker is offline are never seen. A lost connection stops the
consumer with a fatal TransportError.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from taskrelay.core.config.settings import RedisSettings
from taskrelay.core.exceptions import TransportError
from taskrelay.infrastructure.messaging.consumers.base import Delivery, MessageConsumer

if TYPE_CHECKING:
    from taskrelay.infrastructure.messaging.engine import TaskEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedisHandle:
    """Redis client and the Pub/Sub connection consumed from."""

    client: Redis
    pubsub: PubSub


class RedisConsumer(MessageConsumer[RedisHandle]):
    """Consumes task envelopes from Redis Pub/Sub channels."""

    def __init__(self, engine: "TaskEngine[Any]", settings: RedisSettings) -> None:
        super().__init__(engine)
        self._settings = settings

    def broker_kind(self) -> str:
        return "Redis"

    async def _open(self) -> RedisHandle:
        client = Redis.from_url(self._settings.url)
        try:
            await client.ping()
        except RedisError as e:
            await client.aclose()
            raise TransportError("Failed to connect to Redis", e) from e

        return RedisHandle(client=client, pubsub=client.pubsub())

    async def _streams(self, handle: RedisHandle) -> list[AsyncIterator[Delivery]]:
        for channel in self._settings.channels_list:
            try:
                await handle.pubsub.subscribe(channel)
            except RedisError as e:
                raise TransportError(f"Failed to subscribe to channel: {channel}", e) from e
            logger.info("Subscribed to Redis channel: %s", channel)

        return [self._receive(handle.pubsub)]

    async def _receive(self, pubsub: PubSub) -> AsyncIterator[Delivery]:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                channel = message["channel"]
                if isinstance(channel, bytes):
                    channel = channel.decode("utf-8", errors="replace")
                yield Delivery(payload=message["data"], source=channel)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise TransportError("Redis Pub/Sub connection lost", e) from e

        logger.warning("Redis Pub/Sub stream ended")

    async def _disconnect(self, handle: RedisHandle) -> None:
        await handle.pubsub.aclose()
        await handle.client.aclose()
