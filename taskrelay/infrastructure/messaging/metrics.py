# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Prometheus metrics for the task engine.

Metrics Collected:
- {namespace}_tasks_received_total: Envelopes accepted into the queue
- {namespace}_tasks_decode_failed_total: Payloads rejected as malformed
- {namespace}_tasks_completed_total: Successful handler executions
- {namespace}_tasks_failed_total: Failed handler executions
- {namespace}_tasks_retried_total: Retries scheduled
- {namespace}_tasks_dropped_total: Tasks dropped after exhausting retries
- {namespace}_republish_failed_total: Retry publications that failed
- {namespace}_task_duration_seconds: Handler execution time
- {namespace}_tasks_in_flight: Handler executions currently running
- {namespace}_queue_depth: Envelopes waiting in the priority queue

Usage:
    metrics = EngineMetrics(namespace="taskrelay")
    engine = TaskEngine(handler, producer, pool_size=10, metrics=metrics)
    start_http_server(9108, registry=metrics.registry)
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)


class EngineMetrics:
    """Counters and gauges describing engine activity.

    Each instance owns its registry unless one is passed in, so several
    engines (or test cases) never collide on metric names.

    Attributes:
        registry: Prometheus registry holding the metrics.
        namespace: Metric name prefix.
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        namespace: str = "taskrelay",
    ) -> None:
        """Initialize and register the metrics.

        Args:
            registry: Prometheus registry (default: a new private registry).
            namespace: Metrics namespace prefix.
        """
        self.registry = registry or CollectorRegistry()
        self.namespace = namespace

        self.tasks_received = Counter(
            f"{namespace}_tasks_received_total",
            "Task envelopes accepted into the priority queue",
            ["priority"],
            registry=self.registry,
        )

        self.decode_failed = Counter(
            f"{namespace}_tasks_decode_failed_total",
            "Payloads rejected because they are not valid task envelopes",
            registry=self.registry,
        )

        self.tasks_completed = Counter(
            f"{namespace}_tasks_completed_total",
            "Successful task handler executions",
            ["task_type"],
            registry=self.registry,
        )

        self.tasks_failed = Counter(
            f"{namespace}_tasks_failed_total",
            "Failed task handler executions",
            ["task_type", "exception_type"],
            registry=self.registry,
        )

        self.tasks_retried = Counter(
            f"{namespace}_tasks_retried_total",
            "Retries scheduled after a handler failure",
            registry=self.registry,
        )

        self.tasks_dropped = Counter(
            f"{namespace}_tasks_dropped_total",
            "Tasks dropped after exhausting their retries",
            registry=self.registry,
        )

        self.republish_failed = Counter(
            f"{namespace}_republish_failed_total",
            "Retry publications that failed",
            registry=self.registry,
        )

        self.task_duration = Histogram(
            f"{namespace}_task_duration_seconds",
            "Task handler execution duration",
            ["task_type"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
            registry=self.registry,
        )

        self.in_flight = Gauge(
            f"{namespace}_tasks_in_flight",
            "Task handler executions currently running",
            registry=self.registry,
        )

        self.queue_depth = Gauge(
            f"{namespace}_queue_depth",
            "Task envelopes waiting in the priority queue",
            registry=self.registry,
        )

        logger.debug("Engine metrics registered (namespace: %s)", namespace)
