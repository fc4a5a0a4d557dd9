"""
User merge.

Rewrites every reference to one user onto another: contact lists, message
authorship and reads, thread ownership and membership, event ownership,
invitations, hosts and RSVPs. Every rewrite is a key swap followed by a
dedupe, so running a merge twice leaves the same documents as running it
once. The merge holds a lock keyed on both users for its duration.
"""

from contextlib import AbstractAsyncContextManager
from typing import Protocol

from app.config import settings
from app.db import keys
from app.db.document_store import DocumentStore, Query, Transaction
from app.db.entities import put_entities, put_entity
from app.errors import ConflictError, InvalidInputError
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.models.domain.event_domain import Event
from app.models.domain.message_domain import Message
from app.models.domain.read_domain import swap_read_user_keys
from app.models.domain.thread_domain import Thread
from app.models.domain.user_domain import User
from app.services import event_service, message_service, thread_service
from app.services.infrastructure.redis_client import LockNotAcquiredError
from app.services.search_service import SearchClient

logger = get_logger(__name__)


class LockProvider(Protocol):
    def lock(self, name: str, ttl_s: int) -> AbstractAsyncContextManager[None]: ...


def lock_name(old: User, new: User) -> str:
    return f"merge:{old.id}:{new.id}"


def reassign_contacts(users: list[User], old: User, new: User) -> list[User]:
    for user in users:
        user.contact_keys = keys.without(keys.swap(user.contact_keys, old.key, new.key), user.key)
    return users


def reassign_messages(messages: list[Message], old: User, new: User) -> list[Message]:
    for message in messages:
        if keys.equal(message.user_key, old.key):
            message.user_key = new.key
        message.reads = swap_read_user_keys(message.reads, old.key, new.key)
    return messages


def reassign_threads(threads: list[Thread], old: User, new: User) -> list[Thread]:
    for thread in threads:
        if keys.equal(thread.owner_key, old.key):
            thread.owner_key = new.key
        thread.member_keys = keys.without(
            keys.swap(thread.member_keys, old.key, new.key), thread.owner_key
        )
        thread.reads = swap_read_user_keys(thread.reads, old.key, new.key)
    return threads


def reassign_events(events: list[Event], old: User, new: User) -> list[Event]:
    for event in events:
        if keys.equal(event.owner_key, old.key):
            event.owner_key = new.key
        event.user_keys = keys.swap(event.user_keys, old.key, new.key)
        event.host_keys = keys.without(keys.swap(event.host_keys, old.key, new.key), event.owner_key)
        event.rsvp_keys = keys.without(keys.swap(event.rsvp_keys, old.key, new.key), event.owner_key)
        event.reads = swap_read_user_keys(event.reads, old.key, new.key)
    return events


def absorb(new: User, old: User) -> User:
    """Fold the old account's lists and missing profile fields into the new one."""
    new.contact_keys = keys.without(
        keys.without(keys.dedupe([*new.contact_keys, *old.contact_keys]), new.key), old.key
    )
    new.thread_keys = keys.dedupe([*new.thread_keys, *old.thread_keys])
    new.first_name = new.first_name or old.first_name
    new.last_name = new.last_name or old.last_name
    new.avatar = new.avatar or old.avatar
    return new


async def merge(
    store: DocumentStore,
    locks: LockProvider,
    old: User,
    new: User,
    search: SearchClient | None = None,
) -> User:
    """
    Merge `old` into `new` and delete `old`.

    Raises:
        InvalidInputError: either user is unsaved, or both are the same user
        ConflictError: a merge of the same pair is already running
    """
    op = "merge_service.merge"
    if old.key is None or new.key is None or old.key.incomplete or new.key.incomplete:
        raise InvalidInputError("Both users must be saved before merging", op=op)
    if keys.equal(old.key, new.key):
        raise InvalidInputError("Cannot merge a user into itself", op=op)

    try:
        async with locks.lock(lock_name(old, new), settings.MERGE_LOCK_TTL_S):
            await _merge_locked(store, old, new)
    except LockNotAcquiredError:
        raise ConflictError(
            "This account is already being merged",
            op=op,
            messages={"message": "This account is already being merged"},
        ) from None

    if search is not None:
        try:
            await search.delete_user(old.id)
        except Exception as e:
            log_alarm(e, op=op, user_id=old.id)
    return new


async def _merge_locked(store: DocumentStore, old: User, new: User) -> None:
    contact_rows = await store.get_all(Query(User.KIND).filter("contact_keys", old.key))
    contact_owners = [
        User.from_document(key, doc)
        for key, doc in contact_rows
        if not keys.equal(key, old.key) and not keys.equal(key, new.key)
    ]
    messages = await message_service.get_unhydrated_messages_by_user(store, old)
    threads = await thread_service.get_unhydrated_threads_by_user(store, old)
    events = await event_service.get_unhydrated_events_by_user(store, old)

    reassign_contacts(contact_owners, old, new)
    reassign_messages(messages, old, new)
    reassign_threads(threads, old, new)
    reassign_events(events, old, new)
    absorb(new, old)
    owned = [t.key for t in threads if keys.equal(t.owner_key, new.key)]
    new.thread_keys = [k for k in new.thread_keys if not keys.contains(owned, k)]

    async def write(tx: Transaction) -> None:
        await put_entities(tx, contact_owners)
        await put_entities(tx, messages)
        await put_entities(tx, threads)
        await put_entities(tx, events)
        await put_entity(tx, new)
        await tx.delete(old.key)

    await store.run_in_transaction(write)
    logger.info(
        "Users merged",
        old_user_id=old.id,
        new_user_id=new.id,
        contacts=len(contact_owners),
        messages=len(messages),
        threads=len(threads),
        events=len(events),
    )
