# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application task types carried inside task envelopes.

Each variant is tagged on the ``type`` field, e.g.::

    {"type": "SendEmail", "to": "a@b.c", "subject": "Hi", ...}
    {"type": "CleanupExpiredToken"}
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class SendEmail(BaseModel):
    """Send an email notification.

    Attributes:
        to: Recipient address.
        subject: Message subject.
        text_body: Plain text body.
        html_body: HTML body.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["SendEmail"] = "SendEmail"
    to: str
    subject: str
    text_body: str | None = None
    html_body: str | None = None


class CleanupExpiredToken(BaseModel):
    """Remove expired refresh and password reset tokens."""

    model_config = ConfigDict(frozen=True)

    type: Literal["CleanupExpiredToken"] = "CleanupExpiredToken"


class ProcessUserRegistration(BaseModel):
    """Post-registration processing (welcome email) for a user."""

    model_config = ConfigDict(frozen=True)

    type: Literal["ProcessUserRegistration"] = "ProcessUserRegistration"
    user_id: int


class ProcessAvatarUpload(BaseModel):
    """Process an uploaded avatar with progress tracking.

    Attributes:
        task_id: Progress tracking identifier exposed to the client.
        user_id: Owner of the avatar.
        file_name: Name of the uploaded file.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["ProcessAvatarUpload"] = "ProcessAvatarUpload"
    task_id: str
    user_id: int
    file_name: str


TaskType = Annotated[
    Union[SendEmail, CleanupExpiredToken, ProcessUserRegistration, ProcessAvatarUpload],
    Field(discriminator="type"),
]
