# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background scheduling of periodic task publications."""

from taskrelay.infrastructure.background.periodic import (
    PeriodicTaskPublisher,
    ScheduledTask,
    add_default_tasks,
    parse_cron,
)

__all__ = [
    "PeriodicTaskPublisher",
    "ScheduledTask",
    "add_default_tasks",
    "parse_cron",
]
