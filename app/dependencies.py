"""
Composition root.

Every collaborator the handlers and jobs need is built once at startup into
a `Clients` bundle stored on `app.state`. Handlers receive it through
`get_clients`, and tests swap it with `app.dependency_overrides`. A
collaborator whose credential is missing is replaced by its logging
implementation.
"""

from dataclasses import dataclass, field

from fastapi import Query, Request

from app.config import settings
from app.db.document_store import DocumentStore, PostgresDocumentStore
from app.infrastructure.observability.logging import get_logger
from app.models.domain.pagination import Pagination
from app.models.domain.user_domain import User
from app.services.email_queue import EmailQueue
from app.services.infrastructure.redis_client import FastRedisClient, fast_redis
from app.services.magic_link_service import MagicLinkClient
from app.services.mail.mail_client import LoggingMailClient, MailClient, SendGridMailClient
from app.services.mail.mail_service import MailService
from app.services.mail.templates import TemplateRenderer
from app.services.merge_service import LockProvider
from app.services.notification_service import (
    LoggingNotificationClient,
    NotificationClient,
    StreamNotificationClient,
)
from app.services.oauth_service import OAuthClient
from app.services.places_service import GooglePlacesClient, LoggingPlacesClient, PlacesClient
from app.services.search_service import ElasticsearchClient, LoggingSearchClient, SearchClient
from app.services.secrets_service import SecretStore
from app.services.support_service import ensure_support_user

logger = get_logger(__name__)


@dataclass
class Clients:
    store: DocumentStore
    queue: EmailQueue
    locks: LockProvider
    mail: MailService
    magic: MagicLinkClient
    notifications: NotificationClient
    search: SearchClient
    places: PlacesClient
    oauth: OAuthClient
    secrets: SecretStore = field(default_factory=SecretStore)
    support_user: User | None = None

    async def close(self) -> None:
        """Close collaborators that own HTTP connection pools."""
        for client in (self.notifications, self.search, self.places, self.oauth):
            close = getattr(client, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.error("Error closing client", client=type(client).__name__, error=str(e))


def build_mail_client(secrets: SecretStore) -> MailClient:
    api_key = secrets.get("SENDGRID_API_KEY", settings.SENDGRID_API_KEY or "")
    if not api_key:
        logger.warning("SendGrid key missing, emails will only be logged")
        return LoggingMailClient()
    return SendGridMailClient(api_key)


def build_notification_client(secrets: SecretStore) -> NotificationClient:
    api_key = secrets.get("STREAM_API_KEY", settings.STREAM_API_KEY or "")
    api_secret = secrets.get("STREAM_API_SECRET", settings.STREAM_API_SECRET or "")
    if not api_key or not api_secret:
        logger.warning("Stream credentials missing, notifications will only be logged")
        return LoggingNotificationClient()
    return StreamNotificationClient(api_key, api_secret, settings.STREAM_API_REGION)


def build_search_client(secrets: SecretStore) -> SearchClient:
    url = secrets.get("ELASTICSEARCH_URL", settings.ELASTICSEARCH_URL or "")
    if not url:
        logger.warning("Search URL missing, index updates will only be logged")
        return LoggingSearchClient()
    return ElasticsearchClient(url)


def build_places_client(secrets: SecretStore) -> PlacesClient:
    api_key = secrets.get("GOOGLE_MAPS_API_KEY", settings.GOOGLE_MAPS_API_KEY or "")
    if not api_key:
        logger.warning("Maps key missing, places resolve to a fixed location")
        return LoggingPlacesClient()
    return GooglePlacesClient(api_key)


async def build_clients(redis: FastRedisClient = fast_redis) -> Clients:
    """
    Construct the dependency bundle.

    Expects the database pool and Redis to be initialized. Secrets stored in
    the document store override environment configuration.
    """
    store = PostgresDocumentStore()
    await store.ensure_schema()
    secrets = await SecretStore.load(store)

    magic = MagicLinkClient(
        secrets.get("APP_SECRET", settings.APP_SECRET),
        settings.APP_URL,
        settings.MAGIC_LINK_TTL_DAYS,
    )
    clients = Clients(
        store=store,
        queue=EmailQueue(redis, settings.EMAIL_QUEUE_NAME),
        locks=redis,
        mail=MailService(build_mail_client(secrets), TemplateRenderer(), magic, settings.APP_URL),
        magic=magic,
        notifications=build_notification_client(secrets),
        search=build_search_client(secrets),
        places=build_places_client(secrets),
        oauth=OAuthClient(secrets.get("GOOGLE_OAUTH_AUDIENCE", settings.GOOGLE_OAUTH_AUDIENCE or "")),
        secrets=secrets,
    )
    clients.support_user = await ensure_support_user(
        store,
        settings.SUPPORT_EMAIL,
        secrets.get("SUPPORT_PASSWORD", settings.SUPPORT_PASSWORD),
    )
    logger.info("Clients built")
    return clients


def get_clients(request: Request) -> Clients:
    return request.app.state.clients


def get_pagination(page: int = Query(0, ge=0), size: int = Query(0, ge=-1, le=100)) -> Pagination:
    return Pagination(page=page, size=size)
