from datetime import timedelta

import pytest
import pytest_asyncio

from app.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError, UnauthorizedError
from app.models.domain.entity import utcnow
from app.models.domain.pagination import Pagination
from app.services import event_service, message_service
from app.services.places_service import Place

PLACE = Place(place_id="place-1", address="Cafe, 1 Main St", lat=40.7, lng=-74.0, utc_offset=-4 * 3600)


@pytest_asyncio.fixture
async def people(make_user):
    return (
        await make_user("Ann", "Lee"),
        await make_user("Bob", "Ray"),
        await make_user("Cat", "Yu"),
        await make_user("Dan", "Oz"),
    )


async def _event(store, owner, users, future, hosts=(), name="Dinner", **fields):
    return await event_service.create_event(
        store,
        owner,
        name=name,
        description="Bring snacks",
        place=PLACE,
        timestamp=future,
        hosts=list(hosts),
        users=users,
        **fields,
    )


@pytest.mark.asyncio
async def test_create_event_stores_place_and_marks_owner_read(store, people, future):
    ann, bob, _, _ = people

    event = await _event(store, ann, [bob], future)

    stored = await event_service.get_event_by_id(store, event.id)
    assert stored.address == "Cafe, 1 Main St"
    assert stored.utc_offset == -4 * 3600
    assert stored.owner.full_name == "Ann Lee"
    assert [m.id for m in stored.members] == [bob.id, ann.id]
    assert [p.id for p in stored.user_reads()] == [ann.id]


@pytest.mark.asyncio
async def test_get_events_by_user_hydrates_in_bulk(store, people, future):
    ann, bob, cat, _ = people
    await _event(store, ann, [bob], future + timedelta(days=1), name="Later")
    await _event(store, bob, [ann, cat], future, name="Sooner")
    await _event(store, cat, [bob], future, name="Elsewhere")

    store.calls.clear()
    events = await event_service.get_events_by_user(store, ann)

    assert store.calls == ["get_keys", "get_multi", "get_multi"]
    assert [e.name for e in events] == ["Later", "Sooner"]
    assert events[1].owner.full_name == "Bob Ray"

    page = await event_service.get_events_by_user(store, ann, Pagination(page=1, size=1))
    assert [e.name for e in page] == ["Sooner"]


@pytest.mark.asyncio
async def test_get_event_by_id_rejects_other_kinds(store, people):
    ann, _, _, _ = people

    with pytest.raises(NotFoundError):
        await event_service.get_event_by_id(store, ann.id)


@pytest.mark.asyncio
async def test_update_event_rules(store, people, future):
    ann, bob, cat, dan = people
    event = await _event(store, ann, [bob], future, hosts=[cat])

    with pytest.raises(ForbiddenError):
        await event_service.update_event(store, event, bob, name="Lunch")
    with pytest.raises(ForbiddenError):
        await event_service.update_event(store, event, cat, hosts=[dan])
    with pytest.raises(InvalidInputError):
        await event_service.update_event(store, event, ann, timestamp=utcnow() - timedelta(hours=1))

    await event_service.update_event(store, event, cat, name="Lunch", guests_can_invite=True)
    await event_service.update_event(store, event, ann, hosts=[dan])

    stored = await event_service.get_event_by_id(store, event.id)
    assert stored.name == "Lunch"
    assert stored.guests_can_invite
    assert stored.host_keys == [dan.key]
    assert stored.has_user(dan)
    assert stored.has_user(cat)


@pytest.mark.asyncio
async def test_guests_invite_only_when_allowed(store, people, future):
    ann, bob, cat, dan = people
    event = await _event(store, ann, [bob], future)

    with pytest.raises(ForbiddenError):
        await event_service.add_user(store, event, bob, cat)

    event.guests_can_invite = True
    await event_service.add_user(store, event, bob, cat)
    assert event.has_user(cat)

    with pytest.raises(ConflictError):
        await event_service.add_user(store, event, ann, cat)
    with pytest.raises(ForbiddenError):
        await event_service.remove_user(store, event, cat, bob)

    await event_service.remove_user(store, event, cat, cat)
    assert not event.has_user(cat)
    assert not event.has_user(dan)


@pytest.mark.asyncio
async def test_rsvps(store, people, future):
    ann, bob, cat, _ = people
    event = await _event(store, ann, [bob], future)

    await event_service.add_rsvp(store, event, bob)
    with pytest.raises(ConflictError):
        await event_service.add_rsvp(store, event, bob)
    with pytest.raises(ConflictError):
        await event_service.add_rsvp(store, event, ann)
    with pytest.raises(ForbiddenError):
        await event_service.add_rsvp(store, event, cat)

    stored = await event_service.get_event_by_id(store, event.id)
    assert [p.id for p in stored.rsvps] == [bob.id]
    # RSVPs reset read state
    assert stored.reads == []

    await event_service.remove_rsvp(store, stored, bob)
    assert (await event_service.get_event_by_id(store, event.id)).rsvp_keys == []


@pytest.mark.asyncio
async def test_delete_event_is_owner_only(store, people, future):
    ann, bob, _, _ = people
    event = await _event(store, ann, [bob], future)

    with pytest.raises(ForbiddenError):
        await event_service.delete_event(store, event, bob)

    await event_service.delete_event(store, event, ann)
    assert store.kinds("Event") == []


@pytest.mark.asyncio
async def test_mark_as_read_by_marks_messages(store, people, future):
    ann, bob, cat, _ = people
    event = await _event(store, ann, [bob], future)
    await message_service.create_event_message(store, ann, event, "Parking is in the back")

    await event_service.mark_as_read_by(store, event, bob)

    messages = await message_service.get_messages_by_parent(store, event.key)
    assert any(r.user_key == bob.key for r in messages[0].reads)
    with pytest.raises(NotFoundError):
        await event_service.mark_as_read_by(store, event, cat)


@pytest.mark.asyncio
async def test_roll_magic_link_invalidates_old_links(store, magic, people, future):
    ann, bob, _, _ = people
    event = await _event(store, ann, [bob], future)
    old_link = event.get_invite_magic_link(magic)
    _, _, old_ts, old_sig = old_link.rsplit("/", 3)

    with pytest.raises(ForbiddenError):
        await event_service.roll_magic_link(store, event, bob, magic)

    new_link = await event_service.roll_magic_link(store, event, ann, magic)

    assert new_link != old_link
    _, _, ts, sig = new_link.rsplit("/", 3)
    event.verify_invite_magic_link(magic, ts, sig)
    with pytest.raises(UnauthorizedError):
        event.verify_invite_magic_link(magic, old_ts, old_sig)


@pytest.mark.asyncio
async def test_send_invites_async_enqueues(queue, store, people, future):
    ann, bob, _, _ = people
    event = await _event(store, ann, [bob], future)

    await event_service.send_updated_invites_async(queue, event)

    payload = await queue.get_email(timeout=0)
    assert (payload.type, payload.action, payload.ids) == ("Event", "SendUpdatedInvites", [event.id])
