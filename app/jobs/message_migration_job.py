"""
One-off migration rewriting messages stored with a legacy parent field name.

Messages load fine either way; rewriting them lets `parent_key` filters find
them.
"""

from app.db.document_store import DocumentStore, Query
from app.db.entities import put_entities
from app.infrastructure.observability.logging import get_logger
from app.models.domain.message_domain import LEGACY_PARENT_FIELDS, Message

logger = get_logger(__name__)

BATCH_SIZE = 500


def needs_migration(document: dict) -> bool:
    return "parent_key" not in document and any(f in document for f in LEGACY_PARENT_FIELDS)


async def migrate_message_parents(store: DocumentStore) -> int:
    """
    Normalize legacy messages.

    Returns:
        Number of messages rewritten
    """
    rows = await store.get_all(Query("Message"))
    legacy = [Message.from_document(key, doc) for key, doc in rows if needs_migration(doc)]

    for start in range(0, len(legacy), BATCH_SIZE):
        await put_entities(store, legacy[start : start + BATCH_SIZE])

    logger.info("Message parent migration completed", scanned=len(rows), migrated=len(legacy))
    return len(legacy)
