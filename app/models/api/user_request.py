# app/models/api/user_request.py
from typing import Literal

from pydantic import Field

from app.models.api.base import CamelModel


class SignupRequest(CamelModel):
    """Request body for password signup."""

    email: str = Field(..., min_length=3, max_length=254)
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(default="", max_length=255)
    password: str = Field(..., min_length=8, max_length=72)


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class OAuthLoginRequest(CamelModel):
    """Provider token obtained by the client from Google or Facebook."""

    provider: Literal["google", "facebook"]
    token: str = Field(..., min_length=1)


class UpdateUserRequest(CamelModel):
    first_name: str | None = Field(None, min_length=1, max_length=255)
    last_name: str | None = Field(None, max_length=255)
    send_digest: bool | None = None
    send_threads: bool | None = None
    send_events: bool | None = None


class MagicLinkPayload(CamelModel):
    """Fields a magic link carries back to the API."""

    user_id: str = Field(..., min_length=1)
    timestamp: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class ResetPasswordRequest(MagicLinkPayload):
    password: str = Field(..., min_length=8, max_length=72)


class VerifyEmailRequest(MagicLinkPayload):
    pass


class ForgotPasswordRequest(CamelModel):
    email: str = Field(..., min_length=3, max_length=254)
