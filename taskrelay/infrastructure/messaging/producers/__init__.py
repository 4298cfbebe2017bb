# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Broker producers publishing serialized task envelopes."""

from taskrelay.infrastructure.messaging.producers.base import MessageProducer
from taskrelay.infrastructure.messaging.producers.kafka import KafkaProducer
from taskrelay.infrastructure.messaging.producers.rabbitmq import RabbitMQProducer
from taskrelay.infrastructure.messaging.producers.redis import RedisProducer

__all__ = [
    "MessageProducer",
    "KafkaProducer",
    "RabbitMQProducer",
    "RedisProducer",
]
