import copy
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.db.document_store import Query
from app.db.keys import Key
from app.dependencies import Clients, get_clients
from app.models.domain.entity import utcnow
from app.models.domain.user_domain import User
from app.services import user_service
from app.services.email_queue import EmailQueue
from app.services.infrastructure.redis_client import LockNotAcquiredError
from app.services.magic_link_service import MagicLinkClient
from app.services.mail.mail_client import MailError
from app.services.mail.mail_service import MailService
from app.services.mail.templates import TemplateRenderer
from app.services.places_service import LoggingPlacesClient
from app.services.secrets_service import SecretStore

TEST_APP_URL = "https://app.test"


def _json_value(value):
    if isinstance(value, Key):
        return value.encode()
    return value


def _path_matches(node, parts: list[str], value) -> bool:
    if isinstance(node, list):
        return any(_path_matches(item, parts, value) for item in node)
    if not parts:
        return node == value
    if not isinstance(node, dict) or parts[0] not in node:
        return False
    return _path_matches(node[parts[0]], parts[1:], value)


class InMemoryDocumentStore:
    """Dict-backed document store that records every call by operation name."""

    def __init__(self):
        self.documents: dict[Key, dict] = {}
        self.calls: list[str] = []
        self._next_id = 1

    def _complete(self, key: Key) -> Key:
        if not key.incomplete:
            return key
        completed = Key(kind=key.kind, id=self._next_id)
        self._next_id += 1
        return completed

    async def get(self, key: Key) -> dict | None:
        self.calls.append("get")
        document = self.documents.get(key)
        return copy.deepcopy(document) if document is not None else None

    async def get_multi(self, keys) -> list[dict | None]:
        self.calls.append("get_multi")
        return [copy.deepcopy(self.documents.get(k)) if k in self.documents else None for k in keys]

    async def put(self, key: Key, document: dict) -> Key:
        self.calls.append("put")
        key = self._complete(key)
        self.documents[key] = copy.deepcopy(document)
        return key

    async def put_multi(self, keys, documents) -> list[Key]:
        self.calls.append("put_multi")
        stored = []
        for key, document in zip(keys, documents, strict=True):
            key = self._complete(key)
            self.documents[key] = copy.deepcopy(document)
            stored.append(key)
        return stored

    async def delete(self, key: Key) -> None:
        self.calls.append("delete")
        self.documents.pop(key, None)

    async def delete_multi(self, keys) -> None:
        self.calls.append("delete_multi")
        for key in keys:
            self.documents.pop(key, None)

    def _select(self, query: Query) -> list[tuple[Key, dict]]:
        rows = [
            (key, doc)
            for key, doc in self.documents.items()
            if key.kind == query.kind
            and all(_path_matches(doc, path.split("."), _json_value(v)) for path, v in query.filters)
        ]
        if query.order:
            name = query.order.lstrip("-")
            rows.sort(key=lambda row: (str(row[1].get(name, "")), row[0].id))
            if query.order.startswith("-"):
                rows.reverse()
        else:
            rows.sort(key=lambda row: row[0].id)
        rows = rows[query.offset :]
        if query.limit is not None:
            rows = rows[: query.limit]
        return [(key, copy.deepcopy(doc)) for key, doc in rows]

    async def get_all(self, query: Query) -> list[tuple[Key, dict]]:
        self.calls.append("get_all")
        return self._select(query)

    async def get_keys(self, query: Query) -> list[Key]:
        self.calls.append("get_keys")
        return [key for key, _ in self._select(query)]

    async def run_in_transaction(self, fn):
        self.calls.append("run_in_transaction")
        snapshot = copy.deepcopy(self.documents)
        try:
            return await fn(self)
        except Exception:
            self.documents = snapshot
            raise

    def kinds(self, kind: str) -> list[dict]:
        return [doc for key, doc in self.documents.items() if key.kind == kind]


class RecordingMailClient:
    def __init__(self):
        self.sent = []
        self.fail_for: set[str] = set()

    async def send(self, message) -> int:
        if message.to_email in self.fail_for:
            raise MailError("Rejected", status_code=400)
        self.sent.append(message)
        return 202

    def to(self, email: str) -> list:
        return [m for m in self.sent if m.to_email == email]


class FakeRedis:
    """List and lock subset of FastRedisClient."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}
        self.held: set[str] = set()

    async def ping(self) -> bool:
        return True

    async def push_to_list(self, key: str, value: str) -> bool:
        self.lists.setdefault(key, []).insert(0, value)
        return True

    async def pop_from_list(self, key: str, timeout: int = 0) -> str | None:
        items = self.lists.get(key)
        if not items:
            return None
        return items.pop()

    @asynccontextmanager
    async def lock(self, name: str, ttl_s: int):
        if name in self.held:
            raise LockNotAcquiredError(name)
        self.held.add(name)
        try:
            yield
        finally:
            self.held.discard(name)


class RecordingNotificationClient:
    def __init__(self):
        self.notifications = []

    async def put(self, notification) -> None:
        self.notifications.append(notification)

    def realtime_token(self, user_id: str) -> str:
        return f"rt-{user_id}"


class RecordingSearchClient:
    def __init__(self):
        self.updated: list[str] = []
        self.deleted: list[str] = []
        self.results = []

    async def update_user(self, partial, email: str) -> None:
        self.updated.append(partial.id)

    async def delete_user(self, user_id: str) -> None:
        self.deleted.append(user_id)

    async def search_users(self, query: str):
        return list(self.results)


class FakeOAuthClient:
    def __init__(self):
        self.payload = None

    async def verify(self, provider: str, token: str):
        return self.payload


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def mail_client():
    return RecordingMailClient()


@pytest.fixture
def magic():
    return MagicLinkClient("test-secret", TEST_APP_URL)


@pytest.fixture
def mail(mail_client, magic):
    return MailService(mail_client, TemplateRenderer(), magic, TEST_APP_URL)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def queue(fake_redis):
    return EmailQueue(fake_redis, "test-emails")


@pytest.fixture
def clients(store, queue, fake_redis, mail, magic):
    return Clients(
        store=store,
        queue=queue,
        locks=fake_redis,
        mail=mail,
        magic=magic,
        notifications=RecordingNotificationClient(),
        search=RecordingSearchClient(),
        places=LoggingPlacesClient(),
        oauth=FakeOAuthClient(),
        secrets=SecretStore(),
    )


@pytest.fixture
def make_user(store):
    """Create and store a registered user."""

    async def _make(first_name: str, last_name: str = "", email: str | None = None, **fields) -> User:
        user = User(
            email=email or f"{first_name.lower()}@example.com",
            first_name=first_name,
            last_name=last_name,
            verified=True,
            **fields,
        )
        await user_service.commit(store, user)
        return user

    return _make


@pytest.fixture
def future():
    return utcnow() + timedelta(days=3)


@pytest.fixture
def api(clients):
    """TestClient over the full app with the clients bundle swapped in."""
    from app.main import app

    app.dependency_overrides[get_clients] = lambda: clients
    # Not entered as a context manager, so the lifespan never runs
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()
