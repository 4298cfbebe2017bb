# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Broker consumers feeding the task engine."""

from taskrelay.infrastructure.messaging.consumers.base import (
    Connected,
    ConnectionState,
    ConsumerStatus,
    Delivery,
    Disconnected,
    MessageConsumer,
)
from taskrelay.infrastructure.messaging.consumers.kafka import KafkaConsumer
from taskrelay.infrastructure.messaging.consumers.rabbitmq import RabbitMQConsumer
from taskrelay.infrastructure.messaging.consumers.redis import RedisConsumer

__all__ = [
    "MessageConsumer",
    "Delivery",
    "ConsumerStatus",
    "ConnectionState",
    "Connected",
    "Disconnected",
    "KafkaConsumer",
    "RabbitMQConsumer",
    "RedisConsumer",
]
