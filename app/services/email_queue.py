"""
Email job queue.

Handlers enqueue {type, action, ids} payloads instead of sending email in
the request; the `email` worker job drains the queue.
"""

from typing import Literal, Protocol

from pydantic import BaseModel, Field, model_validator

from app.errors import InternalError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

EntityType = Literal["User", "Event", "Thread"]
Action = Literal["SendInvites", "SendUpdatedInvites", "SendThread", "SendWelcome"]

ALLOWED_ACTIONS: dict[str, tuple[str, ...]] = {
    "Thread": ("SendThread",),
    "Event": ("SendInvites", "SendUpdatedInvites"),
    "User": ("SendWelcome",),
}


class EmailPayload(BaseModel):
    type: EntityType
    action: Action
    ids: list[str] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_action(self) -> "EmailPayload":
        if self.action not in ALLOWED_ACTIONS[self.type]:
            raise ValueError(f"Action {self.action} is not valid for type {self.type}")
        return self


class ListBackend(Protocol):
    async def push_to_list(self, key: str, value: str) -> bool: ...

    async def pop_from_list(self, key: str, timeout: int = 0) -> str | None: ...


class EmailQueue:
    def __init__(self, backend: ListBackend, name: str):
        self.backend = backend
        self.name = name

    async def put_email(self, payload: EmailPayload) -> None:
        if not await self.backend.push_to_list(self.name, payload.model_dump_json()):
            raise InternalError("Could not enqueue email", op="email_queue.put_email")
        logger.info("Email job enqueued", type=payload.type, action=payload.action, ids=payload.ids)

    async def get_email(self, timeout: int = 5) -> EmailPayload | None:
        raw = await self.backend.pop_from_list(self.name, timeout=timeout)
        if raw is None:
            return None
        return EmailPayload.model_validate_json(raw)
