from datetime import datetime

from pydantic import AliasChoices, Field

from app.db.keys import Key
from app.errors import ForbiddenError, InvalidInputError
from app.models.domain.entity import Entity, Timestamp, utcnow
from app.models.domain.event_domain import Event
from app.models.domain.read_domain import Read, ReadableMixin, clear_reads, mark_as_read
from app.models.domain.thread_domain import Thread
from app.models.domain.user_domain import User, UserPartial

# Older records name the parent field after threads only
LEGACY_PARENT_FIELDS = ("thread_key", "ThreadKey", "ParentKey")


class Message(ReadableMixin, Entity):
    KIND = "Message"

    user_key: Key
    parent_key: Key = Field(validation_alias=AliasChoices("parent_key", *LEGACY_PARENT_FIELDS))
    body: str
    timestamp: Timestamp = Field(default_factory=utcnow)
    reads: list[Read] = Field(default_factory=list)

    # Hydrated author snapshot, never stored
    user: UserPartial | None = Field(default=None, exclude=True)

    @property
    def parent_id(self) -> str:
        return self.parent_key.encode()


def _validated_body(body: str, op: str) -> str:
    cleaned = (body or "").strip()
    if not cleaned:
        raise InvalidInputError("Invalid message", op=op, messages={"body": "This field is required"})
    return cleaned


def new_thread_message(user: User, thread: Thread, body: str, now: datetime | None = None) -> Message:
    """
    Build a message for a thread and update the thread's denormalized state.

    The thread's preview moves to this message and every read mark is
    cleared except the author's.
    """
    op = "message.new_thread_message"
    if not thread.is_participant(user):
        raise ForbiddenError("You are not a member of this Convo", op=op)

    message = Message(
        user_key=user.key,
        parent_key=thread.key,
        body=_validated_body(body, op),
        timestamp=now or utcnow(),
    )
    message.user = user.to_partial()
    mark_as_read(message, user.key)

    thread.set_preview(message.body, user, message.timestamp)
    thread.increment_response_count()
    clear_reads(thread)
    mark_as_read(thread, user.key)
    return message


def new_event_message(user: User, event: Event, body: str, now: datetime | None = None) -> Message:
    op = "message.new_event_message"
    if not event.has_user(user):
        raise ForbiddenError("You are not invited to this event", op=op)

    message = Message(
        user_key=user.key,
        parent_key=event.key,
        body=_validated_body(body, op),
        timestamp=now or utcnow(),
    )
    message.user = user.to_partial()
    mark_as_read(message, user.key)

    clear_reads(event)
    mark_as_read(event, user.key)
    return message
