"""Notification payload sent by lifecycle hooks."""

from pydantic import BaseModel, ConfigDict, Field


class Notification(BaseModel):
    """In-app notification, optionally mirrored to email."""

    user_id: str = Field(..., min_length=1)
    title: str
    message: str
    type: str = Field(default="info", description="info, success, warning or error")
    resource_type: str | None = None
    resource_id: str | None = None
    send_email_copy: bool = False

    model_config = ConfigDict(frozen=True)
