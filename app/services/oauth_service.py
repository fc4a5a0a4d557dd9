"""
OAuth identity verification for Google and Facebook sign-in.

The client sends the provider token it obtained; we ask the provider who it
belongs to and return a normalized payload.
"""

import httpx
from pydantic import BaseModel

from app.errors import InvalidInputError, UnauthorizedError
from app.infrastructure.observability.logging import get_logger
from app.services.infrastructure.http_client import REQUEST_TIMEOUT, request_with_retry

logger = get_logger(__name__)

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
FACEBOOK_ME_URL = "https://graph.facebook.com/me"
GOOGLE_AVATAR_SIZE_SUFFIX = "?sz=256"


class OAuthPayload(BaseModel):
    provider: str
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    avatar: str = ""


class OAuthClient:
    def __init__(self, google_audience: str | None, http_client: httpx.AsyncClient | None = None):
        self.google_audience = google_audience
        self._client = http_client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

    async def close(self) -> None:
        await self._client.aclose()

    async def verify(self, provider: str, token: str) -> OAuthPayload:
        if provider == "google":
            return await self._verify_google(token)
        if provider == "facebook":
            return await self._verify_facebook(token)
        raise InvalidInputError(
            "Invalid provider",
            op="oauth.verify",
            messages={"provider": f"Unsupported provider '{provider}'"},
        )

    async def _verify_google(self, token: str) -> OAuthPayload:
        op = "oauth.verify_google"
        try:
            response = await request_with_retry(
                self._client,
                "GET",
                GOOGLE_TOKENINFO_URL,
                params={"id_token": token},
                operation=op,
            )
        except httpx.RequestError as e:
            raise UnauthorizedError("Could not verify token", op=op) from e

        if response.status_code != 200:
            logger.warning("Google token rejected", status_code=response.status_code)
            raise UnauthorizedError("Could not verify token", op=op)

        data = response.json()
        if not self.google_audience or data.get("aud") != self.google_audience:
            logger.warning("Google token audience mismatch", aud=data.get("aud"))
            raise UnauthorizedError("Could not verify token", op=op)

        if not data.get("sub") or not data.get("email"):
            raise UnauthorizedError("Token is missing identity claims", op=op)

        picture = data.get("picture") or ""
        return OAuthPayload(
            provider="google",
            id=data["sub"],
            email=data["email"],
            first_name=data.get("given_name", ""),
            last_name=data.get("family_name", ""),
            avatar=f"{picture}{GOOGLE_AVATAR_SIZE_SUFFIX}" if picture else "",
        )

    async def _verify_facebook(self, token: str) -> OAuthPayload:
        op = "oauth.verify_facebook"
        try:
            response = await request_with_retry(
                self._client,
                "GET",
                FACEBOOK_ME_URL,
                params={"fields": "id,email,first_name,last_name", "access_token": token},
                operation=op,
            )
        except httpx.RequestError as e:
            raise UnauthorizedError("Could not verify token", op=op) from e

        if response.status_code != 200:
            logger.warning("Facebook token rejected", status_code=response.status_code)
            raise UnauthorizedError("Could not verify token", op=op)

        data = response.json()
        if not data.get("id") or not data.get("email"):
            raise UnauthorizedError("Token is missing identity claims", op=op)

        return OAuthPayload(
            provider="facebook",
            id=data["id"],
            email=data["email"],
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
        )
