# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Task envelope, task types, handler contract and publish helpers."""

from taskrelay.core.tasks.envelope import (
    DEFAULT_MAX_RETRIES,
    TaskEnvelope,
    TaskEvent,
    TaskPriority,
)
from taskrelay.core.tasks.handler import TaskHandler, TaskRouter
from taskrelay.core.tasks.publish import publish_envelope, publish_task
from taskrelay.core.tasks.task_type import (
    CleanupExpiredToken,
    ProcessAvatarUpload,
    ProcessUserRegistration,
    SendEmail,
    TaskType,
)

__all__ = [
    # Envelope
    "TaskEnvelope",
    "TaskEvent",
    "TaskPriority",
    "DEFAULT_MAX_RETRIES",
    # Task types
    "TaskType",
    "SendEmail",
    "CleanupExpiredToken",
    "ProcessUserRegistration",
    "ProcessAvatarUpload",
    # Handling
    "TaskHandler",
    "TaskRouter",
    # Publishing
    "publish_envelope",
    "publish_task",
]
