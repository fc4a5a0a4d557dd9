"""
events.py
---------
Purpose:
    Events, invitations, RSVPs (including magic-link RSVPs), messages and
    read state.

Notes:
    - Only invitees can see an event; everyone else gets 404.
    - Invitations are emailed through the email queue. Cancellations are
      sent right away because the event is gone by the time a worker would
      pick the job up.
"""

from fastapi import APIRouter, Body, Depends, status

from app.auth.verify import auth_dependency
from app.dependencies import Clients, get_clients, get_pagination
from app.errors import InvalidInputError, NotFoundError
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.models.api.event_request import (
    CancelEventRequest,
    CreateEventRequest,
    MagicRsvpRequest,
    UpdateEventRequest,
)
from app.models.api.event_response import EventResponse, EventsResponse, MagicLinkResponse
from app.models.api.thread_request import CreateMessageRequest
from app.models.api.thread_response import MessageResponse, MessagesResponse
from app.models.api.user_response import UserResponse
from app.models.domain.entity import as_utc
from app.models.domain.event_domain import Event
from app.models.domain.pagination import Pagination
from app.models.domain.user_domain import User
from app.services import event_service, message_service, user_service
from app.services.notification_service import Notification, Verb, filter_key, notify

router = APIRouter(prefix="/events", tags=["events"])
logger = get_logger(__name__)


async def _get_visible_event(clients: Clients, event_id: str, user: User) -> Event:
    event = await event_service.get_event_by_id(clients.store, event_id)
    if not event.has_user(user):
        raise NotFoundError("Event not found", op="events.get_visible_event")
    return event


async def _notify(clients: Clients, event: Event, actor: User, verb: Verb, recipients=None) -> None:
    await notify(
        clients.notifications,
        Notification(
            user_keys=filter_key(recipients if recipients is not None else event.user_keys, actor.key),
            actor=actor.full_name,
            verb=verb,
            target="event",
            target_id=event.id,
            target_name=event.name,
        ),
    )


@router.get("", response_model=EventsResponse)
async def list_events(
    pagination: Pagination = Depends(get_pagination),
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    events = await event_service.get_events_by_user(clients.store, user, pagination)
    return EventsResponse(events=[EventResponse.from_event(e) for e in events])


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    request: CreateEventRequest,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    place = await clients.places.resolve(request.place_id, request.utc_offset)
    users = await user_service.get_or_create_users(clients.store, request.users)
    hosts = await user_service.get_or_create_users(clients.store, request.hosts)

    event = await event_service.create_event(
        clients.store,
        user,
        name=request.name,
        description=request.description,
        place=place,
        timestamp=as_utc(request.timestamp),
        hosts=hosts,
        users=users,
        guests_can_invite=request.guests_can_invite,
    )
    try:
        await event_service.send_invites_async(clients.queue, event)
    except Exception as e:
        log_alarm(e, op="events.create_event", event_id=event.id)
    await _notify(clients, event, user, "NewEvent")
    return EventResponse.from_event(event)


@router.post("/rsvps", response_model=UserResponse)
async def magic_rsvp(request: MagicRsvpRequest, clients: Clients = Depends(get_clients)):
    """RSVP from an emailed link and log the invitee in."""
    event = await event_service.get_event_by_id(clients.store, request.event_id)
    event.verify_rsvp_magic_link(clients.magic, request.user_id, request.timestamp, request.signature)
    if not event.is_in_future():
        raise InvalidInputError(
            "This event has already happened",
            op="events.magic_rsvp",
            messages={"message": "This event has already happened"},
        )

    user = await user_service.get_user_by_id(clients.store, request.user_id)
    if not event.owner_is(user) and not event.has_rsvp(user):
        await event_service.add_rsvp(clients.store, event, user)
        await _notify(clients, event, user, "AddRSVP", recipients=[event.owner_key, *event.host_keys])
    return UserResponse.from_user(user, clients.notifications.realtime_token(user.id))


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    event = await _get_visible_event(clients, event_id, user)
    return EventResponse.from_event(event)


@router.patch("/{event_id}", response_model=EventResponse)
async def update_event(
    event_id: str,
    request: UpdateEventRequest,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    event = await _get_visible_event(clients, event_id, user)
    place = None
    if request.place_id is not None and request.place_id != event.place_id:
        place = await clients.places.resolve(request.place_id, request.utc_offset)
    hosts = None
    if request.hosts is not None:
        hosts = await user_service.get_or_create_users(clients.store, request.hosts)

    await event_service.update_event(
        clients.store,
        event,
        user,
        name=request.name,
        description=request.description,
        place=place,
        timestamp=as_utc(request.timestamp) if request.timestamp else None,
        hosts=hosts,
        guests_can_invite=request.guests_can_invite,
    )
    if request.resend:
        try:
            await event_service.send_updated_invites_async(clients.queue, event)
        except Exception as e:
            log_alarm(e, op="events.update_event", event_id=event.id)
    await _notify(clients, event, user, "UpdateEvent")
    return EventResponse.from_event(event)


@router.delete("/{event_id}", response_model=EventResponse)
async def delete_event(
    event_id: str,
    request: CancelEventRequest | None = Body(None),
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    event = await _get_visible_event(clients, event_id, user)
    await event_service.delete_event(clients.store, event, user)
    if event.is_in_future():
        error = await event_service.send_cancellation(
            clients.mail, event, request.message if request else ""
        )
        if error is not None:
            log_alarm(error, op="events.delete_event", event_id=event.id)
    await _notify(clients, event, user, "DeleteEvent")
    return EventResponse.from_event(event)


@router.post("/{event_id}/users/{user_id}", response_model=EventResponse)
async def add_user(
    event_id: str,
    user_id: str,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    """Invite a user by id or email address."""
    event = await _get_visible_event(clients, event_id, user)
    (invitee,) = await user_service.get_or_create_users(clients.store, [user_id])
    await event_service.add_user(clients.store, event, user, invitee)
    error = await event_service.send_invite_to_user(clients.mail, event, invitee)
    if error is not None:
        log_alarm(error, op="events.add_user", event_id=event.id)
    await _notify(clients, event, user, "NewEvent", recipients=[invitee.key])
    return EventResponse.from_event(event)


@router.delete("/{event_id}/users/{user_id}", response_model=EventResponse)
async def remove_user(
    event_id: str,
    user_id: str,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    event = await _get_visible_event(clients, event_id, user)
    invitee = await user_service.get_user_by_id(clients.store, user_id)
    await event_service.remove_user(clients.store, event, user, invitee)
    return EventResponse.from_event(event)


@router.post("/{event_id}/rsvps", response_model=EventResponse)
async def add_rsvp(
    event_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    event = await _get_visible_event(clients, event_id, user)
    await event_service.add_rsvp(clients.store, event, user)
    await _notify(clients, event, user, "AddRSVP", recipients=[event.owner_key, *event.host_keys])
    return EventResponse.from_event(event)


@router.delete("/{event_id}/rsvps", response_model=EventResponse)
async def remove_rsvp(
    event_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    event = await _get_visible_event(clients, event_id, user)
    await event_service.remove_rsvp(clients.store, event, user)
    await _notify(clients, event, user, "RemoveRSVP", recipients=[event.owner_key, *event.host_keys])
    return EventResponse.from_event(event)


@router.get("/{event_id}/messages", response_model=MessagesResponse)
async def list_messages(
    event_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    event = await _get_visible_event(clients, event_id, user)
    messages = await message_service.get_messages_by_parent(clients.store, event.key)
    return MessagesResponse(messages=[MessageResponse.from_message(m) for m in messages])


@router.post(
    "/{event_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED
)
async def create_message(
    event_id: str,
    request: CreateMessageRequest,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    event = await _get_visible_event(clients, event_id, user)
    message = await message_service.create_event_message(clients.store, user, event, request.body)
    await _notify(clients, event, user, "NewMessage")
    return MessageResponse.from_message(message)


@router.post("/{event_id}/reads", response_model=EventResponse)
async def mark_read(
    event_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    event = await _get_visible_event(clients, event_id, user)
    await event_service.mark_as_read_by(clients.store, event, user)
    return EventResponse.from_event(event)


@router.post("/{event_id}/magic", response_model=MagicLinkResponse)
async def roll_magic_link(
    event_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    """Issue a fresh invite link; previously shared links stop working."""
    event = await _get_visible_event(clients, event_id, user)
    link = await event_service.roll_magic_link(clients.store, event, user, clients.magic)
    return MagicLinkResponse(magic_link=link)
