"""
Event service.

Hydration, invitee and RSVP changes, updates and email fan-out for events.
The owner is always one of `user_keys`, so hydrating an event needs a
single bulk get of its invitees.
"""

from datetime import datetime

from app.db import keys
from app.db.document_store import DocumentStore, Query, Transaction
from app.db.entities import get_entities, get_entity, put_entity
from app.db.keys import Key
from app.errors import ForbiddenError, InvalidInputError, NotFoundError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.entity import utcnow
from app.models.domain.event_domain import Event
from app.models.domain.pagination import Pagination
from app.models.domain.read_domain import mark_as_read
from app.models.domain.user_domain import User
from app.services import message_service
from app.services.email_queue import EmailPayload, EmailQueue
from app.services.magic_link_service import MagicLinkClient
from app.services.mail.mail_client import MailError
from app.services.mail.mail_service import MailService
from app.services.places_service import Place

logger = get_logger(__name__)


async def commit(store: DocumentStore, event: Event) -> Key:
    return await put_entity(store, event)


async def commit_with_transaction(tx: Transaction, event: Event) -> Key:
    return await put_entity(tx, event)


async def get_event_by_key(store: DocumentStore, key: Key) -> Event:
    if key.kind != Event.KIND:
        raise NotFoundError("Event not found", op="event_service.get_event_by_key")
    event = await get_entity(store, Event, key)
    if event is None:
        raise NotFoundError("Event not found", op="event_service.get_event_by_key")
    event.splice(await get_entities(store, User, event.user_keys))
    return event


async def get_event_by_id(store: DocumentStore, event_id: str) -> Event:
    try:
        key = keys.decode(event_id)
    except InvalidInputError:
        raise NotFoundError("Event not found", op="event_service.get_event_by_id") from None
    return await get_event_by_key(store, key)


async def get_events_by_user(
    store: DocumentStore, user: User, pagination: Pagination | None = None
) -> list[Event]:
    """Hydrated events the user is invited to, latest start time first."""
    pagination = pagination or Pagination()
    event_keys = await store.get_keys(
        Query(
            Event.KIND,
            order="-timestamp",
            offset=pagination.offset,
            limit=pagination.limit,
        ).filter("user_keys", user.key)
    )
    events = [e for e in await get_entities(store, Event, event_keys) if e is not None]

    user_keys: list[Key] = []
    for event in events:
        user_keys.extend(event.user_keys)
    users = await get_entities(store, User, user_keys)

    start = 0
    for event in events:
        size = len(event.user_keys)
        event.splice(users[start : start + size])
        start += size
    return events


async def get_unhydrated_events_by_user(store: DocumentStore, user: User) -> list[Event]:
    """Every event referencing the user as owner, invitee or reader."""
    results: dict[Key, Event] = {}
    for path in ("owner_key", "user_keys", "reads.user_key"):
        for key, doc in await store.get_all(Query(Event.KIND).filter(path, user.key)):
            if key not in results:
                results[key] = Event.from_document(key, doc)
    return list(results.values())


async def create_event(
    store: DocumentStore,
    owner: User,
    *,
    name: str,
    description: str,
    place: Place,
    timestamp: datetime,
    hosts: list[User],
    users: list[User],
    guests_can_invite: bool = False,
) -> Event:
    event = Event.new(
        name=name,
        description=description,
        place_id=place.place_id,
        address=place.address,
        lat=place.lat,
        lng=place.lng,
        timestamp=timestamp,
        utc_offset=place.utc_offset,
        owner=owner,
        hosts=hosts,
        users=users,
        guests_can_invite=guests_can_invite,
    )
    mark_as_read(event, owner.key)
    await commit(store, event)
    logger.info("Event created", event_id=event.id, owner_id=owner.id, invitees=len(event.user_keys))
    return event


def _require_manager(event: Event, actor: User, op: str) -> None:
    if not (event.owner_is(actor) or event.is_host(actor)):
        raise ForbiddenError("You cannot change this event", op=op)


async def update_event(
    store: DocumentStore,
    event: Event,
    actor: User,
    *,
    name: str | None = None,
    description: str | None = None,
    place: Place | None = None,
    timestamp: datetime | None = None,
    hosts: list[User] | None = None,
    guests_can_invite: bool | None = None,
) -> Event:
    op = "event_service.update_event"
    _require_manager(event, actor, op)

    if hosts is not None and not event.owner_is(actor):
        raise ForbiddenError("Only the owner can change hosts", op=op)
    if timestamp is not None:
        if timestamp <= utcnow():
            raise InvalidInputError(
                "Invalid time", op=op, messages={"time": "Your event must be in the future"}
            )
        event.timestamp = timestamp

    if name is not None:
        event.name = name
    if description is not None:
        event.description = description
    if place is not None:
        event.place_id = place.place_id
        event.address = place.address
        event.lat = place.lat
        event.lng = place.lng
        event.utc_offset = place.utc_offset
    if hosts is not None:
        event.set_hosts(hosts)
    if guests_can_invite is not None:
        event.guests_can_invite = guests_can_invite

    await commit(store, event)
    logger.info("Event updated", event_id=event.id, actor_id=actor.id)
    return event


async def add_user(store: DocumentStore, event: Event, actor: User, user: User) -> Event:
    if not event.can_invite(actor):
        raise ForbiddenError("You cannot invite people to this event", op="event_service.add_user")
    event.add_user(user)
    await commit(store, event)
    logger.info("User invited to event", event_id=event.id, user_id=user.id)
    return event


async def remove_user(store: DocumentStore, event: Event, actor: User, user: User) -> Event:
    """Owners and hosts can remove anyone; guests can only remove themselves."""
    if not (event.owner_is(actor) or event.is_host(actor) or keys.equal(actor.key, user.key)):
        raise ForbiddenError("You cannot remove this user", op="event_service.remove_user")
    event.remove_user(user)
    await commit(store, event)
    logger.info("User removed from event", event_id=event.id, user_id=user.id)
    return event


async def add_rsvp(store: DocumentStore, event: Event, user: User) -> Event:
    event.add_rsvp(user)
    await commit(store, event)
    return event


async def remove_rsvp(store: DocumentStore, event: Event, user: User) -> Event:
    event.remove_rsvp(user)
    await commit(store, event)
    return event


async def delete_event(store: DocumentStore, event: Event, actor: User) -> None:
    """Delete an event. Messages are left in place."""
    if not event.owner_is(actor):
        raise ForbiddenError("Only the owner can cancel this event", op="event_service.delete_event")
    await store.delete(event.key)
    logger.info("Event deleted", event_id=event.id)


async def mark_as_read_by(store: DocumentStore, event: Event, user: User) -> Event:
    """Mark the event and all of its messages read by an invitee."""
    if not event.has_user(user):
        raise NotFoundError("Event not found", op="event_service.mark_as_read_by")
    messages = await message_service.get_messages_by_parent(store, event.key)
    await message_service.mark_messages_as_read(store, messages, user)
    mark_as_read(event, user.key)
    await commit(store, event)
    return event


async def roll_magic_link(
    store: DocumentStore, event: Event, actor: User, magic: MagicLinkClient
) -> str:
    """Invalidate previously issued invite links and return a fresh one."""
    _require_manager(event, actor, "event_service.roll_magic_link")
    event.roll_token()
    await commit(store, event)
    return event.get_invite_magic_link(magic)


async def send_invites(mail: MailService, event: Event) -> MailError | None:
    return await mail.send_event(event, event.users)


async def send_updated_invites(mail: MailService, event: Event) -> MailError | None:
    return await mail.send_event(event, event.users, updated=True)


async def send_cancellation(mail: MailService, event: Event, message: str = "") -> MailError | None:
    return await mail.send_cancellation(event, event.users, message)


async def send_invite_to_user(mail: MailService, event: Event, user: User) -> MailError | None:
    return await mail.send_invite_to_user(event, user)


async def send_invites_async(queue: EmailQueue, event: Event) -> None:
    await queue.put_email(EmailPayload(type="Event", action="SendInvites", ids=[event.id]))


async def send_updated_invites_async(queue: EmailQueue, event: Event) -> None:
    await queue.put_email(EmailPayload(type="Event", action="SendUpdatedInvites", ids=[event.id]))
