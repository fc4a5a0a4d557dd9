"""
Typed load/save helpers between entities and the document store.
"""

from collections.abc import Sequence
from typing import TypeVar

from app.db.document_store import Transaction
from app.db.keys import Key
from app.models.domain.entity import Entity

E = TypeVar("E", bound=Entity)


async def put_entity(store: Transaction, entity: Entity) -> Key:
    key = await store.put(entity.storage_key(), entity.to_document())
    entity.key = key
    return key


async def put_entities(store: Transaction, entities: Sequence[Entity]) -> list[Key]:
    if not entities:
        return []
    stored = await store.put_multi(
        [e.storage_key() for e in entities], [e.to_document() for e in entities]
    )
    for entity, key in zip(entities, stored, strict=True):
        entity.key = key
    return stored


async def get_entity(store: Transaction, cls: type[E], key: Key) -> E | None:
    document = await store.get(key)
    if document is None:
        return None
    return cls.from_document(key, document)


async def get_entities(store: Transaction, cls: type[E], keys: Sequence[Key]) -> list[E | None]:
    """Bulk get aligned with `keys`; missing documents come back as None."""
    documents = await store.get_multi(list(keys))
    return [
        cls.from_document(key, doc) if doc is not None else None
        for key, doc in zip(keys, documents, strict=True)
    ]
