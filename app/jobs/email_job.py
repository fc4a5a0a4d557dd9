"""
Email worker.

Pops payloads from the email queue and delivers them. Thread and event mail
is sent once per entity id; welcome jobs create the support thread for a new
user. A payload that fails is logged and dropped.
"""

import asyncio

from app.dependencies import Clients
from app.errors import ConvoError, InternalError, wrap
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.services import event_service, support_service, thread_service, user_service
from app.services.email_queue import EmailPayload

logger = get_logger(__name__)

POP_TIMEOUT_SECONDS = 5
ERROR_BACKOFF_SECONDS = 5


async def process_email_payload(clients: Clients, payload: EmailPayload) -> None:
    """
    Deliver one queued email job.

    Raises:
        ConvoError: an entity could not be loaded or the mail was not delivered
    """
    for entity_id in payload.ids:
        if payload.type == "Thread":
            thread = await thread_service.get_thread_by_id(clients.store, entity_id)
            error = await thread_service.send_thread(clients.store, clients.mail, thread)
        elif payload.type == "Event":
            event = await event_service.get_event_by_id(clients.store, entity_id)
            if payload.action == "SendUpdatedInvites":
                error = await event_service.send_updated_invites(clients.mail, event)
            else:
                error = await event_service.send_invites(clients.mail, event)
        else:
            if clients.support_user is None:
                raise InternalError("Support user missing", op="email_job.process_email_payload")
            user = await user_service.get_user_by_id(clients.store, entity_id)
            await support_service.welcome(clients.store, clients.support_user, user)
            error = None

        if error is not None:
            raise error.with_op("email_job.process_email_payload")

        logger.info(
            "Email job processed",
            type=payload.type,
            action=payload.action,
            entity_id=entity_id,
        )


async def run_email_worker(clients: Clients, max_jobs: int | None = None) -> int:
    """
    Process queued email jobs until `max_jobs` have been handled (forever if None).

    Returns:
        Number of payloads popped
    """
    handled = 0
    while max_jobs is None or handled < max_jobs:
        try:
            payload = await clients.queue.get_email(timeout=POP_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error("Error reading email queue", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(ERROR_BACKOFF_SECONDS)
            continue

        if payload is None:
            if max_jobs is not None:
                break
            continue

        handled += 1
        try:
            await process_email_payload(clients, payload)
        except ConvoError as e:
            log_alarm(e, op="email_job.run_email_worker", type=payload.type, ids=payload.ids)
        except Exception as e:
            log_alarm(wrap("email_job.run_email_worker", e), type=payload.type, ids=payload.ids)

    return handled
