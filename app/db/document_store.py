"""
Document store client.

Entities are stored as JSON documents addressed by Key. The Postgres
implementation keeps every kind in one JSONB table and compiles equality
filters to containment (`@>`) so a filter on a list field matches when the
list holds the value.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

import psycopg
from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from app.db.keys import Key
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        kind TEXT NOT NULL,
        id BIGSERIAL NOT NULL,
        data JSONB NOT NULL,
        PRIMARY KEY (kind, id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS documents_data_idx ON documents USING GIN (data jsonb_path_ops)",
)


@dataclass
class Query:
    """Filter + order + offset + limit over one kind."""

    kind: str
    filters: list[tuple[str, Any]] = field(default_factory=list)
    order: str | None = None
    offset: int = 0
    limit: int | None = None

    def filter(self, path: str, value: Any) -> "Query":
        self.filters.append((path, value))
        return self


class Transaction(Protocol):
    async def get(self, key: Key) -> dict | None: ...

    async def get_multi(self, keys: Sequence[Key]) -> list[dict | None]: ...

    async def put(self, key: Key, document: dict) -> Key: ...

    async def put_multi(self, keys: Sequence[Key], documents: Sequence[dict]) -> list[Key]: ...

    async def delete(self, key: Key) -> None: ...


class DocumentStore(Transaction, Protocol):
    async def delete_multi(self, keys: Sequence[Key]) -> None: ...

    async def get_all(self, query: Query) -> list[tuple[Key, dict]]: ...

    async def get_keys(self, query: Query) -> list[Key]: ...

    async def run_in_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T: ...


def _serializable(value: Any) -> Any:
    if isinstance(value, Key):
        return value.encode()
    return value


def containment_variants(path: str, value: Any) -> list[dict]:
    """
    Containment documents matching `value` at a dotted path.

    Each path segment may hold either a nested object or a list of them, so
    "reads.user_key" yields {"reads": {"user_key": v}} and
    {"reads": [{"user_key": v}]} among others.
    """
    value = _serializable(value)
    parts = path.split(".")

    def build(i: int) -> list[Any]:
        if i == len(parts):
            return [value]
        variants = []
        for inner in build(i + 1):
            variants.append({parts[i]: inner})
            variants.append({parts[i]: [inner]})
        return variants

    return build(0)


def _order_clause(order: str | None) -> str:
    if not order:
        return "ORDER BY id"
    descending = order.startswith("-")
    name = order.lstrip("-")
    if not name.replace("_", "").isalnum():
        raise ValueError(f"Invalid order field: {order}")
    return f"ORDER BY data->>'{name}' {'DESC' if descending else 'ASC'}, id"


def _compile_query(query: Query, columns: str) -> tuple[str, list[Any]]:
    clauses = ["kind = %s"]
    params: list[Any] = [query.kind]
    for path, value in query.filters:
        variants = containment_variants(path, value)
        clauses.append("(" + " OR ".join("data @> %s" for _ in variants) + ")")
        params.extend(Jsonb(v) for v in variants)

    sql = f"SELECT {columns} FROM documents WHERE {' AND '.join(clauses)} {_order_clause(query.order)}"
    if query.limit is not None:
        sql += " LIMIT %s"
        params.append(query.limit)
    if query.offset:
        sql += " OFFSET %s"
        params.append(query.offset)
    return sql, params


class _PostgresOps:
    """Single-document operations, optionally bound to a transaction connection."""

    def __init__(self, connection: psycopg.AsyncConnection | None = None):
        self._connection = connection

    async def get(self, key: Key) -> dict | None:
        if key.incomplete:
            return None
        row = await fetch_one(
            "SELECT data FROM documents WHERE kind = %s AND id = %s",
            (key.kind, key.id),
            connection=self._connection,
        )
        return row["data"] if row else None

    async def get_multi(self, keys: Sequence[Key]) -> list[dict | None]:
        complete = [k for k in keys if not k.incomplete]
        if not complete:
            return [None for _ in keys]

        rows = await fetch_all(
            """
            SELECT d.kind, d.id, d.data
            FROM documents d
            JOIN unnest(%s::text[], %s::bigint[]) AS k(kind, id)
              ON d.kind = k.kind AND d.id = k.id
            """,
            ([k.kind for k in complete], [k.id for k in complete]),
            connection=self._connection,
        )
        found = {(row["kind"], row["id"]): row["data"] for row in rows}
        return [found.get((k.kind, k.id)) for k in keys]

    async def put(self, key: Key, document: dict) -> Key:
        if key.incomplete:
            row = await fetch_one(
                "INSERT INTO documents (kind, data) VALUES (%s, %s) RETURNING id",
                (key.kind, Jsonb(document)),
                connection=self._connection,
            )
            return Key(kind=key.kind, id=row["id"])

        await execute_query(
            """
            INSERT INTO documents (kind, id, data) VALUES (%s, %s, %s)
            ON CONFLICT (kind, id) DO UPDATE SET data = EXCLUDED.data
            """,
            (key.kind, key.id, Jsonb(document)),
            connection=self._connection,
        )
        return key

    async def put_multi(self, keys: Sequence[Key], documents: Sequence[dict]) -> list[Key]:
        if len(keys) != len(documents):
            raise ValueError("put_multi needs one document per key")
        return [await self.put(k, d) for k, d in zip(keys, documents, strict=True)]

    async def delete(self, key: Key) -> None:
        if key.incomplete:
            return
        await execute_query(
            "DELETE FROM documents WHERE kind = %s AND id = %s",
            (key.kind, key.id),
            connection=self._connection,
        )


class PostgresTransaction(_PostgresOps):
    pass


class PostgresDocumentStore(_PostgresOps):
    """DocumentStore backed by the shared psycopg pool."""

    async def ensure_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            await execute_query(statement)
        logger.info("Document store schema ready")

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get(self, key: Key) -> dict | None:
        return await super().get(key)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_multi(self, keys: Sequence[Key]) -> list[dict | None]:
        return await super().get_multi(keys)

    async def put_multi(self, keys: Sequence[Key], documents: Sequence[dict]) -> list[Key]:
        if not keys:
            return []
        async with db_pool.transaction() as conn:
            return await PostgresTransaction(conn).put_multi(keys, documents)

    async def delete_multi(self, keys: Sequence[Key]) -> None:
        if not keys:
            return
        async with db_pool.transaction() as conn:
            tx = PostgresTransaction(conn)
            for key in keys:
                await tx.delete(key)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_all(self, query: Query) -> list[tuple[Key, dict]]:
        sql, params = _compile_query(query, "id, data")
        rows = await fetch_all(sql, tuple(params))
        return [(Key(kind=query.kind, id=row["id"]), row["data"]) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_keys(self, query: Query) -> list[Key]:
        sql, params = _compile_query(query, "id")
        rows = await fetch_all(sql, tuple(params))
        return [Key(kind=query.kind, id=row["id"]) for row in rows]

    async def run_in_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        async with db_pool.transaction() as conn:
            return await fn(PostgresTransaction(conn))
