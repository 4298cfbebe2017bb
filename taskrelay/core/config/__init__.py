# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for taskrelay.

Settings are Pydantic-based and loaded from environment variables.

Example:
    >>> from taskrelay.core.config import get_settings
    >>> settings = get_settings()
    >>> settings.worker.pool_size
    10
"""

from taskrelay.core.config.settings import (
    BrokerType,
    KafkaSettings,
    MetricsSettings,
    RabbitMQSettings,
    RedisSettings,
    SchedulerSettings,
    Settings,
    WorkerSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "BrokerType",
    # Subsettings
    "WorkerSettings",
    "KafkaSettings",
    "RedisSettings",
    "RabbitMQSettings",
    "SchedulerSettings",
    "MetricsSettings",
]
