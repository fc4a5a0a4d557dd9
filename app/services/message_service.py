"""
Message service.

Messages are indexed by their parent (Thread or Event). Creating a message
also rewrites the parent's preview and read state, so both documents are
written in one transaction.
"""

from app.db import keys
from app.db.document_store import DocumentStore, Query, Transaction
from app.db.entities import get_entities, put_entities, put_entity
from app.db.keys import Key
from app.infrastructure.observability.logging import get_logger
from app.models.domain.event_domain import Event
from app.models.domain.message_domain import Message, new_event_message, new_thread_message
from app.models.domain.read_domain import is_read, mark_as_read
from app.models.domain.thread_domain import Thread
from app.models.domain.user_domain import User, UserPartial

logger = get_logger(__name__)


async def commit(store: DocumentStore, message: Message) -> Key:
    return await put_entity(store, message)


async def commit_with_transaction(tx: Transaction, message: Message) -> Key:
    return await put_entity(tx, message)


def _load(rows: list[tuple[Key, dict]]) -> list[Message]:
    return [Message.from_document(key, doc) for key, doc in rows]


async def get_messages_by_parent(store: DocumentStore, parent_key: Key) -> list[Message]:
    """
    All messages of a parent with author snapshots attached, newest first.

    Authors are fetched in one bulk get; a deleted author is shown as a
    placeholder.
    """
    messages = _load(await store.get_all(Query(Message.KIND).filter("parent_key", parent_key)))
    if not messages:
        return []

    author_keys = keys.dedupe(m.user_key for m in messages)
    authors = await get_entities(store, User, author_keys)
    partials: dict[Key, UserPartial] = {
        key: author.to_partial() if author is not None else UserPartial.placeholder(key)
        for key, author in zip(author_keys, authors, strict=True)
    }
    for message in messages:
        message.user = partials[message.user_key]

    messages.sort(key=lambda m: m.timestamp, reverse=True)
    return messages


async def get_unhydrated_messages_by_user(store: DocumentStore, user: User) -> list[Message]:
    """Messages authored by or read by the user, without author snapshots."""
    authored = await store.get_all(Query(Message.KIND).filter("user_key", user.key))
    read = await store.get_all(Query(Message.KIND).filter("reads.user_key", user.key))

    seen: set[Key] = set()
    messages = []
    for message in _load(authored + read):
        if message.key in seen:
            continue
        seen.add(message.key)
        messages.append(message)
    return messages


async def create_thread_message(store: DocumentStore, user: User, thread: Thread, body: str) -> Message:
    message = new_thread_message(user, thread, body)

    async def write(tx: Transaction) -> None:
        await put_entity(tx, message)
        await put_entity(tx, thread)

    await store.run_in_transaction(write)
    logger.info("Thread message created", thread_id=thread.id, message_id=message.id, user_id=user.id)
    return message


async def create_event_message(store: DocumentStore, user: User, event: Event, body: str) -> Message:
    message = new_event_message(user, event, body)

    async def write(tx: Transaction) -> None:
        await put_entity(tx, message)
        await put_entity(tx, event)

    await store.run_in_transaction(write)
    logger.info("Event message created", event_id=event.id, message_id=message.id, user_id=user.id)
    return message


async def mark_messages_as_read(store: DocumentStore, messages: list[Message], user: User) -> int:
    """Mark messages read by the user in one bulk write. Returns how many changed."""
    changed = [m for m in messages if not is_read(m, user.key)]
    for message in changed:
        mark_as_read(message, user.key)
    await put_entities(store, changed)
    return len(changed)
