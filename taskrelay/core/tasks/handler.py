# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Task handler contract and a routing implementation.

The engine treats every handler failure as retry-eligible; it does not
distinguish transient from permanent errors. The router itself holds no
business logic, it only delegates to the callable registered for the
envelope's task type.

Example:
    router = TaskRouter()

    @router.route(SendEmail)
    async def send_email(task: SendEmail, envelope: TaskEvent) -> None:
        await smtp.send(task.to, task.subject, task.text_body or "")

    await router.handle(envelope)
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Generic

from taskrelay.core.exceptions import UnhandledTaskError
from taskrelay.core.tasks.envelope import TaskEnvelope, TaskT

logger = logging.getLogger(__name__)

# Receives the task payload and the envelope that carried it
TaskCallable = Callable[[Any, TaskEnvelope[Any]], Awaitable[None]]


def task_type_name(task: Any) -> str:
    """Get the wire tag of a task payload, falling back to its class name."""
    return getattr(task, "type", None) or type(task).__name__


class TaskHandler(ABC, Generic[TaskT]):
    """Executes task envelopes.

    Implementations return normally on success and raise on failure.
    """

    @abstractmethod
    async def handle(self, envelope: TaskEnvelope[TaskT]) -> None:
        """Process a task envelope.

        Args:
            envelope: The envelope to execute.

        Raises:
            Exception: Any failure; the engine decides whether to retry.
        """


class TaskRouter(TaskHandler[Any]):
    """Task handler that delegates to one callable per task type.

    Attributes:
        _routes: Mapping of task payload class to its callable.
    """

    def __init__(self) -> None:
        """Initialize an empty router."""
        self._routes: dict[type, TaskCallable] = {}

    def register(self, task_type: type, func: TaskCallable) -> None:
        """Register the callable executing a task type.

        Registering a type twice replaces the previous callable.

        Args:
            task_type: Task payload class.
            func: Async callable receiving (task, envelope).
        """
        if task_type in self._routes:
            logger.warning("Replacing handler for task type %s", task_type.__name__)
        self._routes[task_type] = func
        logger.debug("Registered handler for task type %s", task_type.__name__)

    def route(self, task_type: type) -> Callable[[TaskCallable], TaskCallable]:
        """Decorator form of register()."""

        def decorator(func: TaskCallable) -> TaskCallable:
            self.register(task_type, func)
            return func

        return decorator

    @property
    def task_types(self) -> list[type]:
        """Task types with a registered callable."""
        return list(self._routes)

    async def handle(self, envelope: TaskEnvelope[Any]) -> None:
        """Dispatch an envelope to the callable registered for its task type.

        Raises:
            UnhandledTaskError: If no callable is registered for the type.
            Exception: Whatever the registered callable raises.
        """
        name = task_type_name(envelope.task)
        func = self._routes.get(type(envelope.task))
        if func is None:
            raise UnhandledTaskError(f"No handler registered for task type {name}")

        logger.info("Processing task %s of type %s", envelope.id, name)
        try:
            await func(envelope.task, envelope)
        except Exception as e:
            logger.error("Failed to process task %s: %s", envelope.id, e)
            raise

        logger.info("Successfully processed task %s", envelope.id)
