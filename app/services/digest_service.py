"""
Digest service.

A digest collects, per unread thread or event, the messages a user has not
read yet, plus events starting soon. Sending a digest marks its messages
read so the next digest does not repeat them.
"""

from datetime import datetime

from app.db.document_store import DocumentStore
from app.db.entities import put_entities
from app.infrastructure.observability.logging import get_logger
from app.models.domain.digest_domain import Digestable, DigestItem
from app.models.domain.message_domain import Message
from app.models.domain.pagination import Pagination
from app.models.domain.read_domain import is_read, mark_as_read
from app.models.domain.user_domain import User
from app.services import event_service, message_service, thread_service
from app.services.mail.mail_service import MailService

logger = get_logger(__name__)


async def generate_digest_item(store: DocumentStore, digestable: Digestable, user: User) -> DigestItem | None:
    """Unread messages of one parent, oldest first, or None when there are none."""
    messages = await message_service.get_messages_by_parent(store, digestable.key)
    unread = [m for m in messages if not is_read(m, user.key)]
    if not unread:
        return None
    unread.reverse()
    return DigestItem(parent_key=digestable.key, name=digestable.get_name(), messages=unread)


async def generate_digest_list(
    store: DocumentStore, digestables: list[Digestable], user: User
) -> list[DigestItem]:
    items = []
    for digestable in digestables:
        item = await generate_digest_item(store, digestable, user)
        if item is not None:
            items.append(item)
    return items


async def mark_digested_as_read(store: DocumentStore, items: list[DigestItem], user: User) -> None:
    """Mark every digested message read by the user in a single bulk write."""
    messages: list[Message] = []
    for item in items:
        for message in item.messages:
            mark_as_read(message, user.key)
            messages.append(message)
    if not messages:
        return
    await put_entities(store, messages)


async def send_digest(
    store: DocumentStore, mail: MailService, user: User, now: datetime | None = None
) -> int:
    """
    Build and email a user's digest.

    Args:
        store: Document store
        mail: Mail service used to deliver the digest
        user: Recipient
        now: Reference time for the upcoming-events window

    Returns:
        Number of digest entries sent (items plus upcoming events); zero when
        nothing was emailed.

    Raises:
        MailError: the digest email could not be delivered
    """
    events = await event_service.get_events_by_user(store, user, Pagination.unlimited())
    threads = await thread_service.get_threads_by_user(store, user)

    digestables: list[Digestable] = [t for t in threads if not is_read(t, user.key)]
    digestables.extend(e for e in events if not is_read(e, user.key))
    upcoming = [e for e in events if e.is_upcoming(now)]

    items = await generate_digest_list(store, digestables, user)
    if not items and not upcoming:
        logger.debug("Nothing to digest", user_id=user.id)
        return 0

    error = await mail.send_digest(user, items, upcoming)
    if error is not None:
        raise error

    await mark_digested_as_read(store, items, user)
    logger.info("Digest sent", user_id=user.id, items=len(items), upcoming=len(upcoming))
    return len(items) + len(upcoming)
