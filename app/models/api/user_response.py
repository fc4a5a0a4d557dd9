# app/models/api/user_response.py
from pydantic import Field

from app.models.api.base import CamelModel
from app.models.domain.user_domain import User, UserPartial


class UserPartialResponse(CamelModel):
    """Public snapshot of a user, as embedded in threads, events and messages."""

    id: str
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    avatar: str = ""

    @classmethod
    def from_partial(cls, partial: UserPartial) -> "UserPartialResponse":
        return cls.model_validate(partial.model_dump())


class UserResponse(CamelModel):
    """The authenticated user, including their session token."""

    id: str
    email: str
    first_name: str
    last_name: str
    full_name: str
    avatar: str
    token: str
    verified: bool
    is_password_set: bool
    is_google_linked: bool
    is_facebook_linked: bool
    send_digest: bool
    send_threads: bool
    send_events: bool
    realtime_token: str = Field(default="", description="Token for the notification feed")

    @classmethod
    def from_user(cls, user: User, realtime_token: str = "") -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            full_name=user.full_name,
            avatar=user.avatar,
            token=user.token,
            verified=user.verified,
            is_password_set=user.is_password_set,
            is_google_linked=user.is_google_linked,
            is_facebook_linked=user.is_facebook_linked,
            send_digest=user.send_digest,
            send_threads=user.send_threads,
            send_events=user.send_events,
            realtime_token=realtime_token,
        )


class UsersResponse(CamelModel):
    users: list[UserPartialResponse]


class ContactsResponse(CamelModel):
    contacts: list[UserPartialResponse]


class ContactResponse(CamelModel):
    contact: UserPartialResponse


class AckResponse(CamelModel):
    """Plain acknowledgement for endpoints with nothing else to return."""

    message: str
