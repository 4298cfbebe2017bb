# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Abstract message producer.

Producers publish serialized task envelopes to a broker destination (a
Kafka topic, a RabbitMQ queue or a Redis channel). Every failure surfaces as
PublishError.
"""

import json
import logging
from abc import ABC, abstractmethod

from taskrelay.core.exceptions import PublishError

logger = logging.getLogger(__name__)


class MessageProducer(ABC):
    """Base class for broker producers.

    Attributes:
        default_destination: Destination used when publish() gets none.
    """

    def __init__(self, default_destination: str) -> None:
        self.default_destination = default_destination

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check whether the broker connection is open."""

    @abstractmethod
    def broker_kind(self) -> str:
        """Human-readable broker name used in log messages."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the broker connection. Calling it twice is a no-op.

        Raises:
            PublishError: If the connection cannot be established.
        """

    @abstractmethod
    async def publish(self, payload: str, destination: str | None = None) -> None:
        """Publish a serialized envelope.

        Args:
            payload: JSON-encoded task envelope.
            destination: Target destination; default_destination if None.

        Raises:
            PublishError: If the broker rejects or does not confirm the message.
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the broker connection."""

    def resolve_destination(self, destination: str | None) -> str:
        """Return the destination, falling back to the default."""
        return destination or self.default_destination

    def _ensure_connected(self) -> None:
        if not self.is_connected:
            raise PublishError(
                f"{self.broker_kind()} producer not connected. Call connect() first."
            )

    @staticmethod
    def extract_event_id(payload: str) -> str:
        """Read the envelope id out of a serialized payload for logging.

        Returns:
            The id, or "unknown" when the payload carries none.
        """
        try:
            document = json.loads(payload)
        except ValueError:
            return "unknown"
        if isinstance(document, dict):
            return str(document.get("id", "unknown"))
        return "unknown"
