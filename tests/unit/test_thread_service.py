import pytest
import pytest_asyncio

from app.errors import ForbiddenError, InvalidInputError, NotFoundError
from app.models.domain.pagination import Pagination
from app.models.domain.read_domain import is_read
from app.services import message_service, thread_service, user_service


@pytest_asyncio.fixture
async def trio(make_user):
    return await make_user("Ann", "Lee"), await make_user("Bob", "Ray"), await make_user("Cat", "Yu")


@pytest.mark.asyncio
async def test_create_thread_links_members(store, trio):
    ann, bob, cat = trio

    thread = await thread_service.create_thread(store, ann, "Plans", [bob, cat])

    assert not thread.key.incomplete
    stored_bob = await user_service.get_user_by_key(store, bob.key)
    stored_ann = await user_service.get_user_by_key(store, ann.key)
    assert thread.key in stored_bob.thread_keys
    assert thread.key not in stored_ann.thread_keys


@pytest.mark.asyncio
async def test_get_threads_by_user_uses_one_query_and_two_bulk_gets(store, trio):
    ann, bob, cat = trio
    await thread_service.create_thread(store, ann, "Owned", [bob])
    other = await thread_service.create_thread(store, bob, "Member", [ann, cat])
    ann = await user_service.get_user_by_key(store, ann.key)

    store.calls.clear()
    threads = await thread_service.get_threads_by_user(store, ann)

    assert store.calls == ["get_keys", "get_multi", "get_multi"]
    assert {t.subject for t in threads} == {"Owned", "Member"}
    member_thread = next(t for t in threads if t.key == other.key)
    assert member_thread.owner.full_name == "Bob Ray"
    assert sorted(m.full_name for m in member_thread.members) == ["Ann Lee", "Cat Yu"]


@pytest.mark.asyncio
async def test_get_threads_by_user_orders_by_activity_and_pages(store, trio):
    ann, bob, _ = trio
    first = await thread_service.create_thread(store, ann, "First", [bob])
    await thread_service.create_thread(store, ann, "Second", [bob])
    await message_service.create_thread_message(store, ann, first, "bump")

    threads = await thread_service.get_threads_by_user(store, ann)
    assert [t.subject for t in threads] == ["First", "Second"]

    page = await thread_service.get_threads_by_user(store, ann, Pagination(page=1, size=1))
    assert [t.subject for t in page] == ["Second"]


@pytest.mark.asyncio
async def test_get_threads_by_user_skips_deleted_threads(store, trio):
    ann, bob, _ = trio
    thread = await thread_service.create_thread(store, ann, "Gone", [bob])
    await store.delete(thread.key)
    bob = await user_service.get_user_by_key(store, bob.key)

    assert await thread_service.get_threads_by_user(store, bob) == []


@pytest.mark.asyncio
async def test_get_thread_by_id_rejects_bad_ids(store):
    with pytest.raises(NotFoundError):
        await thread_service.get_thread_by_id(store, "not-a-key")


@pytest.mark.asyncio
async def test_add_and_remove_user(store, trio):
    ann, bob, cat = trio
    thread = await thread_service.create_thread(store, ann, "Plans", [bob])

    with pytest.raises(ForbiddenError):
        await thread_service.add_user(store, thread, bob, cat)

    await thread_service.add_user(store, thread, ann, cat)
    stored_cat = await user_service.get_user_by_key(store, cat.key)
    assert thread.key in stored_cat.thread_keys

    # Members may remove themselves but nobody else
    with pytest.raises(ForbiddenError):
        await thread_service.remove_user(store, thread, bob, cat)
    await thread_service.remove_user(store, thread, cat, stored_cat)
    stored_cat = await user_service.get_user_by_key(store, cat.key)
    assert thread.key not in stored_cat.thread_keys

    with pytest.raises(InvalidInputError):
        await thread_service.remove_user(store, thread, ann, ann)
    with pytest.raises(NotFoundError):
        await thread_service.remove_user(store, thread, ann, stored_cat)


@pytest.mark.asyncio
async def test_delete_thread_unlinks_members(store, trio):
    ann, bob, _ = trio
    thread = await thread_service.create_thread(store, ann, "Plans", [bob])

    with pytest.raises(ForbiddenError):
        await thread_service.delete_thread(store, thread, bob)

    await thread_service.delete_thread(store, thread, ann)

    assert store.kinds("Thread") == []
    stored_bob = await user_service.get_user_by_key(store, bob.key)
    assert stored_bob.thread_keys == []


@pytest.mark.asyncio
async def test_mark_as_read_by_marks_thread_and_messages(store, trio):
    ann, bob, cat = trio
    thread = await thread_service.create_thread(store, ann, "Plans", [bob])
    await message_service.create_thread_message(store, ann, thread, "one")
    await message_service.create_thread_message(store, ann, thread, "two")

    await thread_service.mark_as_read_by(store, thread, bob)

    assert is_read(thread, bob.key)
    messages = await message_service.get_messages_by_parent(store, thread.key)
    assert all(is_read(m, bob.key) for m in messages)

    with pytest.raises(NotFoundError):
        await thread_service.mark_as_read_by(store, thread, cat)


@pytest.mark.asyncio
async def test_send_thread_async_enqueues(queue, store, trio):
    ann, bob, _ = trio
    thread = await thread_service.create_thread(store, ann, "Plans", [bob])

    await thread_service.send_thread_async(queue, thread)

    payload = await queue.get_email(timeout=0)
    assert payload.type == "Thread"
    assert payload.ids == [thread.id]
