import pytest

from app.errors import ConflictError, NotFoundError, UnauthorizedError
from app.services import message_service, thread_service, user_service
from app.services.oauth_service import OAuthPayload


@pytest.mark.asyncio
async def test_register_and_login(store, clients):
    user = await user_service.register_with_password(
        store, "Ann@Example.com", " Ann ", "Lee", "hunter22", clients.search
    )

    assert user.email == "ann@example.com"
    assert user.first_name == "Ann"
    # Unverified accounts stay out of search
    assert clients.search.updated == []
    user.verified = True
    await user_service.commit(store, user, clients.search)
    assert clients.search.updated == [user.id]

    logged_in = await user_service.login_with_password(store, "ann@example.com", "hunter22")
    assert logged_in.key == user.key

    with pytest.raises(UnauthorizedError):
        await user_service.login_with_password(store, "ann@example.com", "wrong")
    with pytest.raises(UnauthorizedError):
        await user_service.login_with_password(store, "not an email", "hunter22")
    with pytest.raises(ConflictError):
        await user_service.register_with_password(store, "ann@example.com", "Ann", "", "again")


@pytest.mark.asyncio
async def test_register_completes_placeholder(store):
    placeholder, created = await user_service.get_or_create_user_by_email(store, "bob@example.com")
    assert created

    user = await user_service.register_with_password(store, "bob@example.com", "Bob", "Ray", "pw123456")

    assert user.key == placeholder.key
    assert user.is_password_set


@pytest.mark.asyncio
async def test_get_or_create_users_mixes_ids_and_emails(store, make_user):
    ann = await make_user("Ann")

    users = await user_service.get_or_create_users(store, [ann.id, "new@example.com", "ANN@example.com"])

    assert [u.email for u in users] == ["ann@example.com", "new@example.com"]
    with pytest.raises(NotFoundError):
        await user_service.get_or_create_users(store, ["bad-id"])


@pytest.mark.asyncio
async def test_login_with_oauth_links_by_email(store, make_user):
    ann = await make_user("Ann", avatar="")
    payload = OAuthPayload(
        provider="google", id="g-1", email="ann@example.com", first_name="Ann", avatar="https://img/a"
    )

    user, created = await user_service.login_with_oauth(store, payload)

    assert not created
    assert user.key == ann.key
    assert user.oauth_google_id == "g-1"
    assert user.avatar == "https://img/a"

    again, created = await user_service.login_with_oauth(store, payload)
    assert again.key == ann.key and not created

    fresh, created = await user_service.login_with_oauth(
        store, OAuthPayload(provider="facebook", id="f-1", email="cat@example.com", first_name="Cat")
    )
    assert created
    assert fresh.verified


@pytest.mark.asyncio
async def test_contacts(store, make_user):
    ann, bob = await make_user("Ann"), await make_user("Bob")

    await user_service.add_contact(store, ann, bob.id)
    assert [c.id for c in await user_service.get_contacts_by_user(store, ann)] == [bob.id]

    with pytest.raises(ConflictError):
        await user_service.add_contact(store, ann, bob.id)

    await user_service.remove_contact(store, ann, bob.id)
    assert await user_service.get_contacts_by_user(store, ann) == []


@pytest.mark.asyncio
async def test_messages_show_placeholder_for_deleted_authors(store, make_user):
    ann, bob = await make_user("Ann", "Lee"), await make_user("Bob", "Ray")
    thread = await thread_service.create_thread(store, ann, "Plans", [bob])
    await message_service.create_thread_message(store, bob, thread, "first")
    await message_service.create_thread_message(store, ann, thread, "second")
    await store.delete(bob.key)

    store.calls.clear()
    messages = await message_service.get_messages_by_parent(store, thread.key)

    assert store.calls == ["get_all", "get_multi"]
    assert [m.body for m in messages] == ["second", "first"]
    assert messages[0].user.full_name == "Ann Lee"
    assert messages[1].user.full_name == "Deleted user"


@pytest.mark.asyncio
async def test_unhydrated_messages_by_user(store, make_user):
    ann, bob = await make_user("Ann"), await make_user("Bob")
    thread = await thread_service.create_thread(store, ann, "Plans", [bob])
    await message_service.create_thread_message(store, ann, thread, "one")
    reply = await message_service.create_thread_message(store, bob, thread, "two")
    await message_service.mark_messages_as_read(store, [reply], ann)

    messages = await message_service.get_unhydrated_messages_by_user(store, ann)

    assert sorted(m.body for m in messages) == ["one", "two"]
