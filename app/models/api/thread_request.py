# app/models/api/thread_request.py
from pydantic import Field

from app.models.api.base import CamelModel


class CreateThreadRequest(CamelModel):
    """Start a thread with existing users (by id) or anyone by email."""

    subject: str = Field(default="", max_length=255)
    users: list[str] = Field(default_factory=list, max_length=50, description="User ids or emails")
    body: str = Field(..., min_length=1, description="First message")


class CreateMessageRequest(CamelModel):
    body: str = Field(..., min_length=1)
