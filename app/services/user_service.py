"""
User service.

Lookups, signup/login flows, contacts and persistence for User documents.
"""

from app.db import keys
from app.db.document_store import DocumentStore, Query, Transaction
from app.db.entities import get_entities, get_entity, put_entity
from app.db.keys import Key
from app.errors import (
    ConflictError,
    DuplicateError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
)
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.models.domain.user_domain import User, normalize_email
from app.services.oauth_service import OAuthPayload
from app.services.search_service import SearchClient

logger = get_logger(__name__)


async def commit(store: DocumentStore, user: User, search: SearchClient | None = None) -> Key:
    """Persist a user and refresh its search entry when it is registered."""
    key = await put_entity(store, user)
    if search is not None and user.is_registered:
        try:
            await search.update_user(user.to_partial(), user.email)
        except Exception as e:
            log_alarm(e, op="user_service.commit", user_id=user.id)
    return key


async def commit_with_transaction(tx: Transaction, user: User) -> Key:
    return await put_entity(tx, user)


async def get_user_by_key(store: DocumentStore, key: Key) -> User:
    if key.kind != User.KIND:
        raise NotFoundError(op="user_service.get_user_by_key")
    user = await get_entity(store, User, key)
    if user is None:
        raise NotFoundError("User not found", op="user_service.get_user_by_key")
    return user


async def get_user_by_id(store: DocumentStore, user_id: str) -> User:
    try:
        key = keys.decode(user_id)
    except InvalidInputError:
        raise NotFoundError("User not found", op="user_service.get_user_by_id") from None
    return await get_user_by_key(store, key)


async def get_users_by_keys(store: DocumentStore, user_keys: list[Key]) -> list[User | None]:
    return await get_entities(store, User, user_keys)


async def _get_user_by_field(store: DocumentStore, field: str, value: str) -> User | None:
    if not value:
        return None
    # Two is enough to detect a uniqueness violation
    rows = await store.get_all(Query(User.KIND, limit=2).filter(field, value))
    if len(rows) > 1:
        raise DuplicateError(
            f"Multiple users share {field}", op=f"user_service.get_user_by_field({field})"
        )
    if not rows:
        return None
    key, document = rows[0]
    return User.from_document(key, document)


async def get_user_by_email(store: DocumentStore, email: str) -> User | None:
    return await _get_user_by_field(store, "email", normalize_email(email))


async def get_user_by_token(store: DocumentStore, token: str) -> User | None:
    return await _get_user_by_field(store, "token", token)


async def get_user_by_oauth_id(store: DocumentStore, provider: str, oauth_id: str) -> User | None:
    field = {"google": "oauth_google_id", "facebook": "oauth_facebook_id"}.get(provider)
    if field is None:
        raise InvalidInputError(
            "Invalid provider",
            op="user_service.get_user_by_oauth_id",
            messages={"provider": f"Unsupported provider '{provider}'"},
        )
    return await _get_user_by_field(store, field, oauth_id)


async def get_or_create_user_by_email(store: DocumentStore, email: str) -> tuple[User, bool]:
    """Returns (user, created). New users are unregistered placeholders."""
    user = await get_user_by_email(store, email)
    if user is not None:
        return user, False

    user = User.new_incomplete(email)
    await commit(store, user)
    logger.info("Created placeholder user", user_id=user.id)
    return user, True


async def get_or_create_users(store: DocumentStore, identifiers: list[str]) -> list[User]:
    """Resolve a mix of user ids and email addresses, creating users for unknown emails."""
    users: list[User] = []
    for identifier in identifiers:
        if "@" in identifier:
            user, _ = await get_or_create_user_by_email(store, identifier)
        else:
            user = await get_user_by_id(store, identifier)
        if not any(keys.equal(user.key, u.key) for u in users):
            users.append(user)
    return users


async def register_with_password(
    store: DocumentStore,
    email: str,
    first_name: str,
    last_name: str,
    password: str,
    search: SearchClient | None = None,
) -> User:
    """
    Create an account, or complete the placeholder account an invite created.

    Raises:
        ConflictError: the email already belongs to a registered account
    """
    existing = await get_user_by_email(store, email)
    if existing is not None:
        if existing.is_password_set or existing.is_google_linked or existing.is_facebook_linked:
            raise ConflictError(
                "This email has already been registered",
                op="user_service.register_with_password",
                messages={"email": "This email has already been registered"},
            )
        existing.first_name = first_name.strip()
        existing.last_name = last_name.strip()
        if not existing.change_password(password):
            raise InvalidInputError(
                "Invalid password",
                op="user_service.register_with_password",
                messages={"password": "This password is not valid"},
            )
        await commit(store, existing, search)
        return existing

    user = User.new_with_password(email, first_name, last_name, password)
    await commit(store, user, search)
    logger.info("User registered", user_id=user.id)
    return user


async def login_with_password(store: DocumentStore, email: str, password: str) -> User:
    invalid = UnauthorizedError(
        "Invalid credentials",
        op="user_service.login_with_password",
        messages={"message": "Invalid credentials"},
    )
    try:
        user = await get_user_by_email(store, email)
    except InvalidInputError:
        raise invalid from None
    if user is None or not user.check_password(password):
        raise invalid
    return user


async def login_with_oauth(
    store: DocumentStore, payload: OAuthPayload, search: SearchClient | None = None
) -> tuple[User, bool]:
    """
    Find or create the user behind a verified OAuth identity.

    Linking happens by provider id first, then by email. Returns (user, created).
    """
    user = await get_user_by_oauth_id(store, payload.provider, payload.id)
    if user is not None:
        return user, False

    user = await get_user_by_email(store, payload.email)
    if user is not None:
        user.link_oauth(payload.provider, payload.id)
        user.verified = True
        user.first_name = user.first_name or payload.first_name
        user.last_name = user.last_name or payload.last_name
        user.avatar = user.avatar or payload.avatar
        await commit(store, user, search)
        logger.info("Linked OAuth identity", user_id=user.id, provider=payload.provider)
        return user, False

    user = User.new_with_oauth(
        payload.email,
        payload.first_name,
        payload.last_name,
        payload.provider,
        payload.id,
        avatar=payload.avatar,
    )
    await commit(store, user, search)
    logger.info("User registered with OAuth", user_id=user.id, provider=payload.provider)
    return user, True


async def get_contacts_by_user(store: DocumentStore, user: User) -> list[User]:
    contacts = await get_users_by_keys(store, user.contact_keys)
    return [c for c in contacts if c is not None]


async def add_contact(store: DocumentStore, user: User, contact_id: str) -> User:
    contact = await get_user_by_id(store, contact_id)
    user.add_contact(contact)
    await commit(store, user)
    return contact


async def remove_contact(store: DocumentStore, user: User, contact_id: str) -> User:
    contact = await get_user_by_id(store, contact_id)
    user.remove_contact(contact)
    await commit(store, user)
    return contact
