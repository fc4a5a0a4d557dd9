# app/models/api/event_request.py
from datetime import datetime

from pydantic import Field

from app.models.api.base import CamelModel


class CreateEventRequest(CamelModel):
    """Create an event; `users` and `hosts` take user ids or emails."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=4096)
    place_id: str = Field(..., min_length=1)
    timestamp: datetime
    utc_offset: int = Field(default=0, description="Minutes east of UTC, used when the place has none")
    users: list[str] = Field(default_factory=list)
    hosts: list[str] = Field(default_factory=list)
    guests_can_invite: bool = False


class UpdateEventRequest(CamelModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=4096)
    place_id: str | None = Field(None, min_length=1)
    timestamp: datetime | None = None
    utc_offset: int = 0
    hosts: list[str] | None = None
    guests_can_invite: bool | None = None
    resend: bool = Field(default=True, description="Email updated invitations")


class CancelEventRequest(CamelModel):
    message: str = Field(default="", max_length=4096)


class MagicRsvpRequest(CamelModel):
    """Fields from an RSVP magic link."""

    user_id: str = Field(..., min_length=1)
    event_id: str = Field(..., min_length=1)
    timestamp: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
