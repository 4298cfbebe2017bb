# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Helpers for publishing tasks through a message producer."""

from typing import TYPE_CHECKING, Any

from taskrelay.core.tasks.envelope import (
    DEFAULT_MAX_RETRIES,
    TaskEnvelope,
    TaskEvent,
    TaskPriority,
)

if TYPE_CHECKING:
    from taskrelay.infrastructure.messaging.producers.base import MessageProducer


async def publish_envelope(
    producer: "MessageProducer",
    envelope: TaskEnvelope[Any],
    destination: str | None = None,
) -> None:
    """Serialize an envelope and publish it.

    Args:
        producer: Producer to publish with.
        envelope: Envelope to publish.
        destination: Topic, queue or channel; the producer default if None.

    Raises:
        PublishError: If the producer fails.
    """
    await producer.publish(envelope.to_json(), destination)


async def publish_task(
    producer: "MessageProducer",
    task: Any,
    priority: TaskPriority = TaskPriority.NORMAL,
    destination: str | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> TaskEvent:
    """Wrap a task in a fresh envelope and publish it.

    Args:
        producer: Producer to publish with.
        task: Application task payload.
        priority: Execution priority.
        destination: Topic, queue or channel; the producer default if None.
        max_retries: Retry ceiling for the new envelope.

    Returns:
        The published envelope.

    Raises:
        PublishError: If the producer fails.
    """
    envelope = TaskEvent.new(task, priority=priority, max_retries=max_retries)
    await publish_envelope(producer, envelope, destination)
    return envelope
