"""
Support account and welcome threads.
"""

from app.db.document_store import DocumentStore, Transaction
from app.db.entities import put_entity
from app.infrastructure.observability.logging import get_logger
from app.models.domain.message_domain import new_thread_message
from app.models.domain.read_domain import mark_as_read
from app.models.domain.thread_domain import Thread
from app.models.domain.user_domain import User
from app.services import user_service

logger = get_logger(__name__)

SUPPORT_FIRST_NAME = "Convo Support"
WELCOME_SUBJECT = "Welcome"
WELCOME_MESSAGE = """Hi there, welcome to Convo!

Convo is a place for conversations and events with the people you care about.
Start a **Convo** with a few friends, or plan an **event** and invite your
guests by email. They don't need an account to RSVP.

If you have questions or feedback, just reply to this message. We read
everything."""


async def ensure_support_user(store: DocumentStore, email: str, password: str) -> User:
    """Fetch the support account, creating it on first start."""
    user = await user_service.get_user_by_email(store, email)
    if user is not None:
        return user

    user = User.new_with_password(email, SUPPORT_FIRST_NAME, "", password)
    user.verified = True
    await user_service.commit(store, user)
    logger.info("Created support user", user_id=user.id)
    return user


async def welcome(store: DocumentStore, support_user: User, user: User) -> Thread:
    """
    Start a welcome thread from the support account.

    The thread and its message are marked read for the new user so they do
    not show up in the first digest.
    """
    thread = Thread.new(WELCOME_SUBJECT, support_user, [user])

    async def write(tx: Transaction) -> None:
        # The message needs the thread key, and the thread then needs the preview
        await put_entity(tx, thread)
        message = new_thread_message(support_user, thread, WELCOME_MESSAGE)
        mark_as_read(thread, user.key)
        mark_as_read(message, user.key)
        await put_entity(tx, message)
        await put_entity(tx, thread)
        user.add_thread(thread.key)
        await put_entity(tx, user)

    await store.run_in_transaction(write)
    logger.info("Created welcome thread", user_id=user.id, thread_id=thread.id)
    return thread
