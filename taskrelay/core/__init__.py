# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package for taskrelay.

This package contains the broker-independent building blocks:
- config: Application configuration and settings
- tasks: Task envelope, task types, handler contract and publish helpers
- exceptions: Messaging error hierarchy
"""
