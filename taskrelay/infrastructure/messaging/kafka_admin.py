# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Kafka topic provisioning."""

import logging

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import KafkaError, TopicAlreadyExistsError

from taskrelay.core.exceptions import TransportError

logger = logging.getLogger(__name__)


async def ensure_topics_exist(
    brokers: str,
    topics: list[str],
    num_partitions: int = 1,
    replication_factor: int = 1,
) -> list[str]:
    """Create any missing topics.

    A topic created concurrently by another worker is not an error.

    Args:
        brokers: Comma-separated bootstrap servers.
        topics: Topics that must exist.
        num_partitions: Partitions for newly created topics.
        replication_factor: Replication factor for newly created topics.

    Returns:
        Topics that were created by this call.

    Raises:
        TransportError: If the cluster cannot be reached.
    """
    admin = AIOKafkaAdminClient(bootstrap_servers=brokers)
    try:
        try:
            await admin.start()
        except KafkaError as e:
            raise TransportError("Failed to create Kafka admin client", e) from e

        try:
            existing = set(await admin.list_topics())
        except KafkaError as e:
            raise TransportError("Failed to list Kafka topics", e) from e

        missing = [topic for topic in topics if topic not in existing]
        for topic in topics:
            if topic in existing:
                logger.info("Topic '%s' already exists", topic)

        if not missing:
            return []

        try:
            await admin.create_topics(
                [
                    NewTopic(
                        name=topic,
                        num_partitions=num_partitions,
                        replication_factor=replication_factor,
                    )
                    for topic in missing
                ]
            )
        except TopicAlreadyExistsError:
            logger.info("Topics %s were created concurrently", missing)
            return []
        except KafkaError as e:
            logger.warning("Could not create topics %s: %s", missing, e)
            return []

        for topic in missing:
            logger.info("Topic '%s' created successfully", topic)
        return missing
    finally:
        await admin.close()
