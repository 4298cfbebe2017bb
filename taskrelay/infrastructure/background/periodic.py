# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Periodic publication of tasks.

Uses APScheduler to publish freshly built task envelopes on a cron or
interval schedule. Scheduled jobs only publish; execution happens in
whichever worker consumes the destination.

Example:
    publisher = PeriodicTaskPublisher(producer)

    # Publish a cleanup task at the top of every hour
    publisher.add_cron_task(
        name="Cleanup expired tokens",
        task_factory=CleanupExpiredToken,
        cron_expression="0 * * * *",
        destination="tasks",
    )

    await publisher.start()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from taskrelay.core.config.settings import Settings
from taskrelay.core.tasks.envelope import DEFAULT_MAX_RETRIES, TaskPriority
from taskrelay.core.tasks.publish import publish_task
from taskrelay.core.tasks.task_type import CleanupExpiredToken
from taskrelay.infrastructure.messaging.producers.base import MessageProducer
from taskrelay.utils.datetime import format_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """A task published on a schedule.

    Attributes:
        id: Unique job identifier.
        name: Human-readable job name.
        task_factory: Zero-argument callable building the task payload.
        destination: Topic, queue or channel; the producer default if None.
        priority: Priority of the published envelopes.
        enabled: Whether the job is enabled.
        last_run: Time of the last successful publication.
        run_count: Number of successful publications.
        error_count: Number of failed publications.
    """

    name: str
    task_factory: Callable[[], Any]
    destination: str | None = None
    priority: TaskPriority = TaskPriority.NORMAL
    id: str = field(default_factory=lambda: str(uuid4()))
    enabled: bool = True
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "destination": self.destination,
            "priority": self.priority.value,
            "enabled": self.enabled,
            "last_run": format_iso(self.last_run),
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


def parse_cron(cron_expression: str) -> CronTrigger:
    """Build a UTC trigger from a five-field cron expression.

    Args:
        cron_expression: "minute hour day month weekday".

    Raises:
        ValueError: If the expression does not have five fields or a field
            is invalid.
    """
    parts = cron_expression.split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron expression: {cron_expression}")

    return CronTrigger(
        minute=parts[0],
        hour=parts[1],
        day=parts[2],
        month=parts[3],
        day_of_week=parts[4],
        timezone="UTC",
    )


class PeriodicTaskPublisher:
    """Publishes tasks on cron and interval schedules.

    Attributes:
        _scheduler: APScheduler instance.
        _tasks: Scheduled tasks by id.
        _running: Whether the scheduler is running.
    """

    def __init__(
        self,
        producer: MessageProducer,
        max_retries: int = DEFAULT_MAX_RETRIES,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        """Initialize the publisher.

        Args:
            producer: Producer used for publication.
            max_retries: Retry ceiling of published envelopes.
            scheduler: APScheduler instance (default: a new UTC scheduler).
        """
        self._producer = producer
        self._max_retries = max_retries
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self._running

    def add_cron_task(
        self,
        name: str,
        task_factory: Callable[[], Any],
        cron_expression: str,
        destination: str | None = None,
        priority: TaskPriority = TaskPriority.NORMAL,
        enabled: bool = True,
    ) -> ScheduledTask:
        """Publish a task on a cron schedule.

        Args:
            name: Job name.
            task_factory: Builds the task payload for each run.
            cron_expression: Cron expression (minute hour day month weekday).
            destination: Target destination; the producer default if None.
            priority: Priority of published envelopes.
            enabled: Whether the job starts enabled.

        Returns:
            Created ScheduledTask.

        Raises:
            ValueError: If the cron expression is invalid.
        """
        trigger = parse_cron(cron_expression)
        task = ScheduledTask(
            name=name,
            task_factory=task_factory,
            destination=destination,
            priority=priority,
            enabled=enabled,
        )
        self._register(task, trigger)

        logger.info("Added cron task: %s (%s)", name, cron_expression)
        return task

    def add_interval_task(
        self,
        name: str,
        task_factory: Callable[[], Any],
        seconds: int = 0,
        minutes: int = 0,
        hours: int = 0,
        destination: str | None = None,
        priority: TaskPriority = TaskPriority.NORMAL,
        enabled: bool = True,
    ) -> ScheduledTask:
        """Publish a task at a fixed interval.

        Returns:
            Created ScheduledTask.

        Raises:
            ValueError: If the interval is not positive.
        """
        if seconds + minutes * 60 + hours * 3600 <= 0:
            raise ValueError("Interval must be positive")

        trigger = IntervalTrigger(seconds=seconds, minutes=minutes, hours=hours, timezone="UTC")
        task = ScheduledTask(
            name=name,
            task_factory=task_factory,
            destination=destination,
            priority=priority,
            enabled=enabled,
        )
        self._register(task, trigger)

        logger.info(
            "Added interval task: %s (every %dh %dm %ds)",
            name,
            hours,
            minutes,
            seconds,
        )
        return task

    def _register(self, task: ScheduledTask, trigger: Any) -> None:
        self._tasks[task.id] = task
        self._scheduler.add_job(
            self.execute_task,
            trigger=trigger,
            args=[task.id],
            id=task.id,
            name=task.name,
        )
        if not task.enabled:
            self._scheduler.pause_job(task.id)

    async def execute_task(self, task_id: str) -> None:
        """Build and publish one instance of a scheduled task.

        Failures are logged and counted, never raised.

        Args:
            task_id: ID of the scheduled task.
        """
        task = self._tasks.get(task_id)
        if not task or not task.enabled:
            return

        logger.debug("Executing scheduled task: %s", task.name)

        try:
            envelope = await publish_task(
                self._producer,
                task.task_factory(),
                priority=task.priority,
                destination=task.destination,
                max_retries=self._max_retries,
            )
        except Exception as e:
            task.error_count += 1
            logger.error("Scheduled task %s failed: %s", task.name, e)
            return

        task.last_run = utc_now()
        task.run_count += 1
        logger.info("Scheduled task %s published as %s", task.name, envelope.id)

    def remove_task(self, task_id: str) -> bool:
        """Remove a scheduled task.

        Returns:
            True if removed.
        """
        if task_id not in self._tasks:
            return False

        try:
            self._scheduler.remove_job(task_id)
        except JobLookupError:
            logger.debug("Job %s was not registered with the scheduler", task_id)

        del self._tasks[task_id]
        logger.info("Removed scheduled task: %s", task_id)
        return True

    def enable_task(self, task_id: str) -> bool:
        """Resume a scheduled task. Returns False for unknown ids."""
        task = self._tasks.get(task_id)
        if not task:
            return False
        task.enabled = True
        self._scheduler.resume_job(task_id)
        return True

    def disable_task(self, task_id: str) -> bool:
        """Pause a scheduled task. Returns False for unknown ids."""
        task = self._tasks.get(task_id)
        if not task:
            return False
        task.enabled = False
        self._scheduler.pause_job(task_id)
        return True

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def list_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    async def start(self) -> None:
        """Start the scheduler on the running event loop."""
        if self._running:
            return
        self._scheduler.start()
        self._running = True
        logger.info("Periodic task publisher started with %d jobs", len(self._tasks))

    async def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Periodic task publisher stopped")

    def get_stats(self) -> dict[str, Any]:
        """Get publisher statistics."""
        return {
            "is_running": self._running,
            "task_count": len(self._tasks),
            "enabled_count": sum(1 for t in self._tasks.values() if t.enabled),
            "total_runs": sum(t.run_count for t in self._tasks.values()),
            "total_errors": sum(t.error_count for t in self._tasks.values()),
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }


def add_default_tasks(publisher: PeriodicTaskPublisher, settings: Settings) -> None:
    """Register the built-in periodic jobs.

    Currently a single job: publish CleanupExpiredToken on the configured
    cron schedule (hourly by default).
    """
    publisher.add_cron_task(
        name="Cleanup expired tokens",
        task_factory=CleanupExpiredToken,
        cron_expression=settings.scheduler.cleanup_cron,
        destination=settings.scheduler.cleanup_destination,
    )
