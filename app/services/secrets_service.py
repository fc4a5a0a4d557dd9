"""
Secret lookup.

Secrets are stored as documents of kind "Secret" ({name, value}) and loaded
into memory once at startup. Lookups fall back to the environment variable
of the same name and then to a literal default.
"""

import os

from app.db.document_store import DocumentStore, Query
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SECRET_KIND = "Secret"


class SecretStore:
    def __init__(self, values: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(values or {})

    @classmethod
    async def load(cls, store: DocumentStore) -> "SecretStore":
        rows = await store.get_all(Query(SECRET_KIND))
        values = {
            doc["name"]: doc.get("value", "")
            for _, doc in rows
            if isinstance(doc, dict) and doc.get("name")
        }
        logger.info("Secrets loaded", count=len(values))
        return cls(values)

    def get(self, name: str, fallback: str = "") -> str:
        value = self._values.get(name) or os.getenv(name) or fallback
        if not value:
            logger.warning("Secret is empty", name=name)
        return value
