from typing import Protocol

from pydantic import BaseModel, Field

from app.db.keys import Key
from app.models.domain.message_domain import Message
from app.models.domain.read_domain import Read


class Digestable(Protocol):
    """A parent whose unread messages can be collected into a digest."""

    key: Key | None

    def get_name(self) -> str: ...

    def get_reads(self) -> list[Read]: ...


class DigestItem(BaseModel):
    parent_key: Key
    name: str
    messages: list[Message] = Field(default_factory=list)

    @property
    def parent_id(self) -> str:
        return self.parent_key.encode()
