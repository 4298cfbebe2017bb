"""taskrelay.

Broker-agnostic background task engine: ingests task envelopes from Kafka,
RabbitMQ or Redis, orders them by priority, executes them under a bounded
worker pool and retries failures with exponential backoff.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
