"""
Shared base for stored entities.

Entities serialize to plain JSON documents. Hydrated projections (user
snapshots attached for responses and emails) are declared with
`exclude=True` so they never reach storage.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, ClassVar, Self

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer

from app.db.keys import Key

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    # Fixed width so lexical order in storage matches chronological order
    return as_utc(value).strftime(TIMESTAMP_FORMAT)


Timestamp = Annotated[
    datetime,
    AfterValidator(as_utc),
    PlainSerializer(format_timestamp, return_type=str, when_used="json"),
]


class Entity(BaseModel):
    KIND: ClassVar[str]

    model_config = ConfigDict(populate_by_name=True)

    key: Key | None = Field(default=None, exclude=True)

    @property
    def id(self) -> str:
        return self.key.encode() if self.key else ""

    @property
    def numeric_id(self) -> int:
        return self.key.id if self.key and self.key.id is not None else 0

    def storage_key(self) -> Key:
        return self.key or Key(kind=self.KIND)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, key: Key, document: dict[str, Any]) -> Self:
        entity = cls.model_validate(document)
        entity.key = key
        return entity
