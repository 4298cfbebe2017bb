# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Messaging: the task engine and its broker adapters.

This package provides:
- TaskEngine: priority queue, bounded worker pool and retry coordination
- Consumers for Kafka, RabbitMQ and Redis Pub/Sub
- Producers for the same brokers
- Factories selecting the adapters from settings
"""

from taskrelay.infrastructure.messaging.engine import TaskEngine
from taskrelay.infrastructure.messaging.factory import create_consumer, create_producer
from taskrelay.infrastructure.messaging.metrics import EngineMetrics
from taskrelay.infrastructure.messaging.retry import RetryCoordinator, backoff_delay
from taskrelay.infrastructure.messaging.scheduler import PriorityScheduler
from taskrelay.infrastructure.messaging.worker_pool import WorkerPool

__all__ = [
    "TaskEngine",
    "PriorityScheduler",
    "WorkerPool",
    "RetryCoordinator",
    "backoff_delay",
    "EngineMetrics",
    "create_consumer",
    "create_producer",
]
