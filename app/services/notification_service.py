"""
Activity-feed notifications.

Each recipient has a feed "notification:<user id>". Activities are posted
to a Stream-compatible REST API authenticated with a server-side JWT.
Notification failures never fail the request that produced them.
"""

from typing import Literal, Protocol

import httpx
import jwt
from pydantic import BaseModel

from app.db import keys
from app.db.keys import Key
from app.errors import InternalError
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.services.infrastructure.http_client import REQUEST_TIMEOUT, request_with_retry

logger = get_logger(__name__)

Verb = Literal["NewEvent", "UpdateEvent", "DeleteEvent", "AddRSVP", "RemoveRSVP", "NewMessage"]
Target = Literal["thread", "event"]

FEED_GROUP = "notification"


class NotificationError(InternalError):
    pass


class Notification(BaseModel):
    user_keys: list[Key]
    actor: str
    verb: Verb
    target: Target
    target_id: str
    target_name: str

    def activity(self) -> dict:
        return {
            "actor": self.actor,
            "verb": self.verb,
            "object": f"{self.target}:{self.target_id}",
            "target": self.target,
            "targetName": self.target_name,
        }


def filter_key(user_keys: list[Key], key: Key | None) -> list[Key]:
    """Recipients without the actor."""
    return keys.without(user_keys, key) if key is not None else list(user_keys)


class NotificationClient(Protocol):
    async def put(self, notification: Notification) -> None: ...

    def realtime_token(self, user_id: str) -> str: ...


class StreamNotificationClient:
    def __init__(
        self,
        api_key: str,
        api_secret: str,
        region: str = "us-east",
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self._secret = api_secret
        self.base_url = f"https://{region}-api.stream-io-api.com/api/v1.0"
        self._client = http_client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

    async def close(self) -> None:
        await self._client.aclose()

    def _server_token(self) -> str:
        return jwt.encode({"resource": "*", "action": "*", "feed_id": "*"}, self._secret, algorithm="HS256")

    def realtime_token(self, user_id: str) -> str:
        return jwt.encode(
            {"resource": "*", "action": "read", "feed_id": f"{FEED_GROUP}{user_id}"},
            self._secret,
            algorithm="HS256",
        )

    async def put(self, notification: Notification) -> None:
        headers = {"Authorization": self._server_token(), "stream-auth-type": "jwt"}
        activity = notification.activity()

        for user_key in notification.user_keys:
            user_id = user_key.encode()
            op = "notification.put"
            response = await request_with_retry(
                self._client,
                "POST",
                f"{self.base_url}/feed/{FEED_GROUP}/{user_id}/",
                params={"api_key": self.api_key},
                headers=headers,
                json=activity,
                operation=op,
            )
            if not response.is_success:
                raise NotificationError(
                    f"Feed {FEED_GROUP}:{user_id} rejected activity with {response.status_code}", op=op
                )

        logger.debug(
            "Notification posted",
            verb=notification.verb,
            target=notification.target,
            recipients=len(notification.user_keys),
        )


class LoggingNotificationClient:
    async def put(self, notification: Notification) -> None:
        logger.info(
            "Notification skipped (logging notification client)",
            verb=notification.verb,
            target=notification.target,
            target_id=notification.target_id,
            recipients=len(notification.user_keys),
        )

    def realtime_token(self, user_id: str) -> str:
        return ""


async def notify(client: NotificationClient, notification: Notification) -> None:
    """Post a notification, logging instead of raising on failure."""
    if not notification.user_keys:
        return
    try:
        await client.put(notification)
    except Exception as e:
        log_alarm(e, op="notification.notify", verb=notification.verb, target_id=notification.target_id)
