# app/models/api/thread_response.py
from datetime import datetime

from app.models.api.base import CamelModel
from app.models.api.user_response import UserPartialResponse
from app.models.domain.message_domain import Message
from app.models.domain.thread_domain import Thread
from app.models.domain.user_domain import UserPartial


def _partial(partial: UserPartial | None) -> UserPartialResponse | None:
    return UserPartialResponse.from_partial(partial) if partial is not None else None


class PreviewResponse(CamelModel):
    body: str
    sender: UserPartialResponse
    timestamp: datetime


class ThreadResponse(CamelModel):
    id: str
    subject: str
    owner: UserPartialResponse | None
    users: list[UserPartialResponse]
    preview: PreviewResponse | None = None
    user_reads: list[UserPartialResponse]
    response_count: int
    created_at: datetime

    @classmethod
    def from_thread(cls, thread: Thread) -> "ThreadResponse":
        preview = None
        if thread.preview is not None:
            preview = PreviewResponse(
                body=thread.preview.body,
                sender=UserPartialResponse.from_partial(thread.preview.sender),
                timestamp=thread.preview.timestamp,
            )
        return cls(
            id=thread.id,
            subject=thread.subject,
            owner=_partial(thread.owner),
            users=[UserPartialResponse.from_partial(p) for p in thread.members],
            preview=preview,
            user_reads=[UserPartialResponse.from_partial(p) for p in thread.user_reads()],
            response_count=thread.response_count,
            created_at=thread.created_at,
        )


class ThreadsResponse(CamelModel):
    threads: list[ThreadResponse]


class MessageResponse(CamelModel):
    id: str
    parent_id: str
    user: UserPartialResponse | None
    body: str
    timestamp: datetime

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            parent_id=message.parent_id,
            user=_partial(message.user),
            body=message.body,
            timestamp=message.timestamp,
        )


class MessagesResponse(CamelModel):
    messages: list[MessageResponse]


class InboundResponse(CamelModel):
    status: str
    message_id: str | None = None
