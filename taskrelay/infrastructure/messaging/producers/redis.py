# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis Pub/Sub producer.

Pub/Sub has no persistence: a message published while no worker is
subscribed is lost. The subscriber count returned by PUBLISH is logged so
that situation is visible.
"""

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from taskrelay.core.config.settings import RedisSettings
from taskrelay.core.exceptions import PublishError
from taskrelay.infrastructure.messaging.producers.base import MessageProducer

logger = logging.getLogger(__name__)


class RedisProducer(MessageProducer):
    """Publishes task envelopes to Redis channels."""

    def __init__(self, settings: RedisSettings) -> None:
        super().__init__(settings.default_channel)
        self._settings = settings
        self._client: Redis | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def broker_kind(self) -> str:
        return "Redis"

    async def connect(self) -> None:
        if self._client is not None:
            return

        client = Redis.from_url(self._settings.url, decode_responses=True)
        try:
            await client.ping()
        except RedisError as e:
            await client.aclose()
            raise PublishError("Failed to connect to Redis", e) from e

        self._client = client
        logger.info("Redis producer connected")

    async def publish(self, payload: str, destination: str | None = None) -> None:
        self._ensure_connected()
        channel = self.resolve_destination(destination)
        event_id = self.extract_event_id(payload)

        try:
            receivers = await self._client.publish(channel, payload)
        except RedisError as e:
            logger.error("Failed to publish event %s to channel %s: %s", event_id, channel, e)
            raise PublishError(f"Failed to publish to Redis channel {channel}", e) from e

        if receivers == 0:
            logger.warning(
                "Published event %s to channel %s but no subscribers received it",
                event_id,
                channel,
            )
        else:
            logger.info(
                "Published event %s to channel %s (%d subscribers)",
                event_id,
                channel,
                receivers,
            )

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose()
        logger.info("Redis producer closed")
