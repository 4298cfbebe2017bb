# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Messaging error hierarchy.

Only fatal transport errors are expected to cross the engine boundary.
Decode, publish and handler errors are absorbed by the component that
observes them and surface in the logs only.
"""

from typing import Optional


class MessagingError(Exception):
    """Base exception for messaging failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying client library error, if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        """Initialize the messaging error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class TransportError(MessagingError):
    """Raised when a broker connection, subscription or stream fails.

    Attributes:
        fatal: Whether the consumer loop must abort. Non-fatal errors are
            logged and the loop continues after a short delay.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        fatal: bool = True,
    ) -> None:
        super().__init__(message, original_error)
        self.fatal = fatal


class DecodeError(MessagingError):
    """Raised when a raw payload is not a valid task envelope."""


class PublishError(MessagingError):
    """Raised when a producer fails to publish a payload."""


class UnhandledTaskError(MessagingError):
    """Raised by the task router for task types without a registered handler."""
