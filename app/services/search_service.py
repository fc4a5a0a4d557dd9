"""
User search backed by an Elasticsearch-compatible REST endpoint.
"""

from typing import Protocol

import httpx

from app.errors import InternalError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.user_domain import UserPartial
from app.services.infrastructure.http_client import REQUEST_TIMEOUT, request_with_retry

logger = get_logger(__name__)

USER_INDEX = "users"
MAX_RESULTS = 10


class SearchError(InternalError):
    pass


class SearchClient(Protocol):
    async def update_user(self, partial: UserPartial, email: str) -> None: ...

    async def delete_user(self, user_id: str) -> None: ...

    async def search_users(self, query: str) -> list[UserPartial]: ...


class ElasticsearchClient:
    def __init__(self, base_url: str, http_client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

    async def close(self) -> None:
        await self._client.aclose()

    def _check(self, response: httpx.Response, operation: str, allow: tuple[int, ...] = ()) -> None:
        if response.is_success or response.status_code in allow:
            return
        logger.error("Search request failed", operation=operation, status_code=response.status_code)
        raise SearchError(f"Search request failed with {response.status_code}", op=operation)

    async def update_user(self, partial: UserPartial, email: str) -> None:
        op = "search.update_user"
        response = await request_with_retry(
            self._client,
            "POST",
            f"{self.base_url}/{USER_INDEX}/_update/{partial.id}",
            json={"doc": {**partial.model_dump(), "email": email}, "doc_as_upsert": True},
            operation=op,
        )
        self._check(response, op)

    async def delete_user(self, user_id: str) -> None:
        op = "search.delete_user"
        response = await request_with_retry(
            self._client, "DELETE", f"{self.base_url}/{USER_INDEX}/_doc/{user_id}", operation=op
        )
        self._check(response, op, allow=(404,))

    async def search_users(self, query: str) -> list[UserPartial]:
        op = "search.search_users"
        body = {
            "size": MAX_RESULTS,
            "query": {
                "multi_match": {
                    "query": query,
                    "type": "bool_prefix",
                    "fields": ["full_name", "first_name", "last_name", "email"],
                }
            },
        }
        response = await request_with_retry(
            self._client, "POST", f"{self.base_url}/{USER_INDEX}/_search", json=body, operation=op
        )
        self._check(response, op)

        hits = response.json().get("hits", {}).get("hits", [])
        return [UserPartial.model_validate(hit["_source"]) for hit in hits if "_source" in hit]


class LoggingSearchClient:
    async def update_user(self, partial: UserPartial, email: str) -> None:
        logger.info("Search update skipped (logging search client)", user_id=partial.id)

    async def delete_user(self, user_id: str) -> None:
        logger.info("Search delete skipped (logging search client)", user_id=user_id)

    async def search_users(self, query: str) -> list[UserPartial]:
        logger.info("Search skipped (logging search client)", query=query)
        return []
