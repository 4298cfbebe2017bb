# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Task envelope: the serializable unit of work.

An envelope wraps an application task payload with the metadata the engine
needs for scheduling and retries. Envelopes are immutable; a retry derives a
new envelope with an incremented retry counter and the original creation
time, so a retried task keeps its seniority in the priority queue.

created_at is held at microsecond precision. Producers writing finer
timestamps (nanoseconds) are accepted; the extra digits are truncated on
decode, so a republished retry carries the truncated value.

Wire format (JSON)::

    {
        "id": "6f1c...",
        "task": {"type": "SendEmail", ...},
        "created_at": "2025-01-01T12:00:00.123456Z",
        "retry_count": 0,
        "max_retries": 3,
        "priority": "Normal"
    }
"""

from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from taskrelay.core.exceptions import DecodeError
from taskrelay.core.tasks.task_type import TaskType
from taskrelay.utils.datetime import ensure_utc, utc_now

TaskT = TypeVar("TaskT")

DEFAULT_MAX_RETRIES = 3


class TaskPriority(str, Enum):
    """Priority level for task execution, ordered Low < Normal < High."""

    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"

    @property
    def rank(self) -> int:
        """Numeric rank used for ordering (higher runs first)."""
        return _PRIORITY_RANKS[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_RANKS = {
    TaskPriority.LOW: 0,
    TaskPriority.NORMAL: 1,
    TaskPriority.HIGH: 2,
}


class TaskEnvelope(BaseModel, Generic[TaskT]):
    """Task payload plus scheduling and retry metadata.

    Attributes:
        id: Unique task identifier.
        task: Application-specific task payload.
        created_at: Creation time, preserved across retries.
        retry_count: Number of retries already performed.
        max_retries: Retry ceiling.
        priority: Execution priority.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    task: TaskT
    created_at: datetime = Field(default_factory=utc_now)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    priority: TaskPriority = TaskPriority.NORMAL

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        """Store creation time as timezone-aware UTC."""
        return ensure_utc(value)

    @classmethod
    def new(
        cls,
        task: TaskT,
        priority: TaskPriority = TaskPriority.NORMAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> "TaskEnvelope[TaskT]":
        """Create a fresh envelope for a task.

        Args:
            task: Task payload.
            priority: Execution priority.
            max_retries: Retry ceiling.

        Returns:
            New envelope with a random id and the current time.
        """
        return cls(task=task, priority=priority, max_retries=max_retries)

    def should_retry(self) -> bool:
        """Check whether a failed execution may be retried."""
        return self.retry_count < self.max_retries

    def next_retry(self) -> "TaskEnvelope[TaskT]":
        """Derive the envelope for the next retry attempt.

        Returns:
            Copy with retry_count incremented by one; every other field,
            created_at included, is unchanged.
        """
        return self.model_copy(update={"retry_count": self.retry_count + 1})

    def to_json(self) -> str:
        """Serialize to the JSON wire format."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> "TaskEnvelope[TaskT]":
        """Deserialize an envelope from the JSON wire format.

        Args:
            raw: JSON document as text or UTF-8 bytes.

        Returns:
            Parsed envelope.

        Raises:
            DecodeError: If the payload is not a valid envelope.
        """
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise DecodeError("Failed to parse task envelope", e) from e


# Envelope type carrying the application task variants
TaskEvent = TaskEnvelope[TaskType]
