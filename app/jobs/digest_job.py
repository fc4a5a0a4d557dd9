"""
Digest job.

Emails every user who opted into digests a summary of their unread threads
and events plus events coming up in the next day. One user's failure never
stops the run.
"""

import asyncio
from datetime import datetime

from app.db.document_store import DocumentStore, Query
from app.dependencies import Clients
from app.errors import ConvoError
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.models.domain.user_domain import User
from app.services import digest_service

logger = get_logger(__name__)

DIGEST_INTERVAL_HOURS = 24


async def get_digest_users(store: DocumentStore) -> list[User]:
    rows = await store.get_all(Query("User").filter("send_digest", True))
    return [User.from_document(key, document) for key, document in rows]


async def run_digest_job(clients: Clients, now: datetime | None = None) -> dict:
    """
    Send one digest round.

    Returns:
        Metrics with the users checked, digests sent and failures
    """
    users = await get_digest_users(clients.store)
    metrics = {"users_checked": len(users), "digests_sent": 0, "failures": 0}

    for user in users:
        try:
            sent = await digest_service.send_digest(clients.store, clients.mail, user, now)
        except ConvoError as e:
            metrics["failures"] += 1
            log_alarm(e, op="digest_job.run_digest_job", user_id=user.id)
            continue
        if sent:
            metrics["digests_sent"] += 1

    logger.info("Digest job completed", **metrics)
    return metrics


async def start_digest_scheduler(clients: Clients) -> None:
    logger.info("Starting digest scheduler", interval_hours=DIGEST_INTERVAL_HOURS)

    while True:
        try:
            await run_digest_job(clients)
        except Exception as e:
            logger.error("Error in digest scheduler", error=str(e), error_type=type(e).__name__)
        await asyncio.sleep(DIGEST_INTERVAL_HOURS * 3600)
