"""
Thread service.

Hydration, membership changes and email fan-out for threads. A user's
threads are the ones they own (found by query) plus the ones listed in
`User.thread_keys`; both sides of the membership are kept in step here.
"""

from app.db import keys
from app.db.document_store import DocumentStore, Query, Transaction
from app.db.entities import get_entities, get_entity, put_entities, put_entity
from app.db.keys import Key
from app.errors import ForbiddenError, InvalidInputError, NotFoundError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.pagination import Pagination
from app.models.domain.read_domain import mark_as_read
from app.models.domain.thread_domain import Thread
from app.models.domain.user_domain import User
from app.services import message_service
from app.services.email_queue import EmailPayload, EmailQueue
from app.services.mail.mail_client import MailError
from app.services.mail.mail_service import MailService

logger = get_logger(__name__)


async def commit(store: DocumentStore, thread: Thread) -> Key:
    return await put_entity(store, thread)


async def commit_with_transaction(tx: Transaction, thread: Thread) -> Key:
    return await put_entity(tx, thread)


async def _hydrate(store: DocumentStore, thread: Thread) -> Thread:
    users = await get_entities(store, User, thread.participant_keys)
    thread.splice(users)
    return thread


async def get_thread_by_key(store: DocumentStore, key: Key) -> Thread:
    if key.kind != Thread.KIND:
        raise NotFoundError("Thread not found", op="thread_service.get_thread_by_key")
    thread = await get_entity(store, Thread, key)
    if thread is None:
        raise NotFoundError("Thread not found", op="thread_service.get_thread_by_key")
    return await _hydrate(store, thread)


async def get_thread_by_id(store: DocumentStore, thread_id: str) -> Thread:
    try:
        key = keys.decode(thread_id)
    except InvalidInputError:
        raise NotFoundError("Thread not found", op="thread_service.get_thread_by_id") from None
    return await get_thread_by_key(store, key)


def _last_activity(thread: Thread):
    return thread.preview.timestamp if thread.preview else thread.created_at


async def get_threads_by_user(
    store: DocumentStore, user: User, pagination: Pagination | None = None
) -> list[Thread]:
    """
    Hydrated threads the user owns or belongs to, most recently active first.

    Issues exactly one query and two bulk gets regardless of how many
    threads the user has.

    Args:
        store: Document store
        user: Owner or member
        pagination: Optional window over the sorted result
    """
    owned = await store.get_keys(Query(Thread.KIND).filter("owner_key", user.key))
    candidates = keys.dedupe([*owned, *user.thread_keys])

    # Stale thread_keys entries point at deleted threads; drop them
    threads = [t for t in await get_entities(store, Thread, candidates) if t is not None]

    user_keys: list[Key] = []
    arity: list[int] = []
    for thread in threads:
        participants = thread.participant_keys
        user_keys.extend(participants)
        arity.append(len(participants))

    users = await get_entities(store, User, user_keys)

    start = 0
    for thread, size in zip(threads, arity, strict=True):
        thread.splice(users[start : start + size])
        start += size

    threads.sort(key=_last_activity, reverse=True)
    if pagination is not None:
        end = None if pagination.limit is None else pagination.offset + pagination.limit
        threads = threads[pagination.offset : end]
    return threads


async def get_unhydrated_threads_by_user(store: DocumentStore, user: User) -> list[Thread]:
    """Every thread referencing the user as owner, member or reader."""
    results: dict[Key, Thread] = {}
    for path in ("owner_key", "member_keys", "reads.user_key"):
        for key, doc in await store.get_all(Query(Thread.KIND).filter(path, user.key)):
            if key not in results:
                results[key] = Thread.from_document(key, doc)
    return list(results.values())


async def get_users_by_thread(store: DocumentStore, thread: Thread) -> list[User]:
    """Owner followed by members, skipping users that no longer exist."""
    users = await get_entities(store, User, thread.participant_keys)
    return [u for u in users if u is not None]


async def create_thread(store: DocumentStore, owner: User, subject: str, users: list[User]) -> Thread:
    thread = Thread.new(subject, owner, users)
    members = [u for u in thread.users if not thread.owner_is(u)]

    async def write(tx: Transaction) -> None:
        await put_entity(tx, thread)
        for member in members:
            member.add_thread(thread.key)
        await put_entities(tx, members)

    await store.run_in_transaction(write)
    logger.info("Thread created", thread_id=thread.id, owner_id=owner.id, members=len(members))
    return thread


async def add_user(store: DocumentStore, thread: Thread, actor: User, user: User) -> Thread:
    if not thread.owner_is(actor):
        raise ForbiddenError("Only the owner can add people to this Convo", op="thread_service.add_user")
    if not thread.add_user(user):
        return thread

    user.add_thread(thread.key)

    async def write(tx: Transaction) -> None:
        await put_entity(tx, thread)
        await put_entity(tx, user)

    await store.run_in_transaction(write)
    logger.info("User added to thread", thread_id=thread.id, user_id=user.id)
    return thread


async def remove_user(store: DocumentStore, thread: Thread, actor: User, user: User) -> Thread:
    """Owners can remove anyone; members can only remove themselves."""
    if not (thread.owner_is(actor) or keys.equal(actor.key, user.key)):
        raise ForbiddenError("You cannot remove this user", op="thread_service.remove_user")
    if thread.owner_is(user):
        raise InvalidInputError(
            "You cannot remove yourself from your own Convo",
            op="thread_service.remove_user",
            messages={"message": "You cannot remove yourself from your own Convo"},
        )
    if not thread.remove_user(user):
        raise NotFoundError(
            "This user is not in this Convo",
            op="thread_service.remove_user",
            messages={"message": "This user is not in this Convo"},
        )

    user.remove_thread(thread.key)

    async def write(tx: Transaction) -> None:
        await put_entity(tx, thread)
        await put_entity(tx, user)

    await store.run_in_transaction(write)
    logger.info("User removed from thread", thread_id=thread.id, user_id=user.id)
    return thread


async def delete_thread(store: DocumentStore, thread: Thread, actor: User) -> None:
    """Delete a thread and unlink it from its members. Messages are left in place."""
    if not thread.owner_is(actor):
        raise ForbiddenError("Only the owner can delete this Convo", op="thread_service.delete_thread")

    members = [u for u in await get_entities(store, User, thread.member_keys) if u is not None]
    for member in members:
        member.remove_thread(thread.key)

    async def write(tx: Transaction) -> None:
        await put_entities(tx, members)
        await tx.delete(thread.key)

    await store.run_in_transaction(write)
    logger.info("Thread deleted", thread_id=thread.id)


async def mark_as_read_by(store: DocumentStore, thread: Thread, user: User) -> Thread:
    """Mark the thread and all of its messages read by a participant."""
    if not thread.is_participant(user):
        raise NotFoundError("Thread not found", op="thread_service.mark_as_read_by")
    messages = await message_service.get_messages_by_parent(store, thread.key)
    await message_service.mark_messages_as_read(store, messages, user)
    mark_as_read(thread, user.key)
    await commit(store, thread)
    return thread


async def send_thread(store: DocumentStore, mail: MailService, thread: Thread) -> MailError | None:
    """Email the latest messages to every participant but the sender."""
    messages = await message_service.get_messages_by_parent(store, thread.key)
    users = await get_users_by_thread(store, thread)
    return await mail.send_thread(thread, users, messages)


async def send_thread_async(queue: EmailQueue, thread: Thread) -> None:
    await queue.put_email(EmailPayload(type="Thread", action="SendThread", ids=[thread.id]))
