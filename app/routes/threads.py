"""
threads.py
----------
Purpose:
    Threads (Convos), their members, messages and read state.

Notes:
    - Only participants can see a thread; everyone else gets 404.
    - New messages are emailed through the email queue and announced on
      the notification feeds of the other participants.
"""

from fastapi import APIRouter, Depends, status

from app.auth.verify import auth_dependency
from app.db import keys
from app.dependencies import Clients, get_clients, get_pagination
from app.errors import NotFoundError
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.models.api.thread_request import CreateMessageRequest, CreateThreadRequest
from app.models.api.thread_response import (
    MessageResponse,
    MessagesResponse,
    ThreadResponse,
    ThreadsResponse,
)
from app.models.domain.message_domain import Message
from app.models.domain.pagination import Pagination
from app.models.domain.thread_domain import Thread
from app.models.domain.user_domain import User
from app.services import message_service, thread_service, user_service
from app.services.notification_service import Notification, filter_key, notify

router = APIRouter(prefix="/threads", tags=["threads"])
logger = get_logger(__name__)


async def _get_visible_thread(clients: Clients, thread_id: str, user: User) -> Thread:
    thread = await thread_service.get_thread_by_id(clients.store, thread_id)
    if not thread.is_participant(user):
        raise NotFoundError("Thread not found", op="threads.get_visible_thread")
    return thread


async def _announce_message(clients: Clients, thread: Thread, user: User, message: Message) -> None:
    try:
        await thread_service.send_thread_async(clients.queue, thread)
    except Exception as e:
        log_alarm(e, op="threads.announce_message", thread_id=thread.id)

    await notify(
        clients.notifications,
        Notification(
            user_keys=filter_key(thread.participant_keys, user.key),
            actor=user.full_name,
            verb="NewMessage",
            target="thread",
            target_id=thread.id,
            target_name=thread.subject,
        ),
    )
    logger.info("Thread message announced", thread_id=thread.id, message_id=message.id)


@router.get("", response_model=ThreadsResponse)
async def list_threads(
    pagination: Pagination = Depends(get_pagination),
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    threads = await thread_service.get_threads_by_user(clients.store, user, pagination)
    return ThreadsResponse(threads=[ThreadResponse.from_thread(t) for t in threads])


@router.post("", response_model=ThreadResponse, status_code=status.HTTP_201_CREATED)
async def create_thread(
    request: CreateThreadRequest,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    members = await user_service.get_or_create_users(clients.store, request.users)
    thread = await thread_service.create_thread(clients.store, user, request.subject, members)
    message = await message_service.create_thread_message(clients.store, user, thread, request.body)
    await _announce_message(clients, thread, user, message)
    return ThreadResponse.from_thread(thread)


@router.get("/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    thread = await _get_visible_thread(clients, thread_id, user)
    return ThreadResponse.from_thread(thread)


@router.delete("/{thread_id}", response_model=ThreadResponse)
async def delete_thread(
    thread_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    thread = await _get_visible_thread(clients, thread_id, user)
    await thread_service.delete_thread(clients.store, thread, user)
    return ThreadResponse.from_thread(thread)


@router.post("/{thread_id}/users/{user_id}", response_model=ThreadResponse)
async def add_user(
    thread_id: str,
    user_id: str,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    """Add a member by user id or email address."""
    thread = await _get_visible_thread(clients, thread_id, user)
    (new_member,) = await user_service.get_or_create_users(clients.store, [user_id])
    await thread_service.add_user(clients.store, thread, user, new_member)
    return ThreadResponse.from_thread(thread)


@router.delete("/{thread_id}/users/{user_id}", response_model=ThreadResponse)
async def remove_user(
    thread_id: str,
    user_id: str,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    thread = await _get_visible_thread(clients, thread_id, user)
    member = await user_service.get_user_by_id(clients.store, user_id)
    await thread_service.remove_user(clients.store, thread, user, member)
    if keys.equal(user.key, member.key):
        logger.info("User left thread", thread_id=thread.id, user_id=user.id)
    return ThreadResponse.from_thread(thread)


@router.get("/{thread_id}/messages", response_model=MessagesResponse)
async def list_messages(
    thread_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    thread = await _get_visible_thread(clients, thread_id, user)
    messages = await message_service.get_messages_by_parent(clients.store, thread.key)
    return MessagesResponse(messages=[MessageResponse.from_message(m) for m in messages])


@router.post(
    "/{thread_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED
)
async def create_message(
    thread_id: str,
    request: CreateMessageRequest,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    thread = await _get_visible_thread(clients, thread_id, user)
    message = await message_service.create_thread_message(clients.store, user, thread, request.body)
    await _announce_message(clients, thread, user, message)
    return MessageResponse.from_message(message)


@router.post("/{thread_id}/reads", response_model=ThreadResponse)
async def mark_read(
    thread_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    thread = await _get_visible_thread(clients, thread_id, user)
    await thread_service.mark_as_read_by(clients.store, thread, user)
    return ThreadResponse.from_thread(thread)
