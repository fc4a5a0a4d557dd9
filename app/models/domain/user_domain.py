import re
import secrets
from typing import TYPE_CHECKING, Literal

import bcrypt
from pydantic import BaseModel, Field

from app.db import keys
from app.db.keys import Key
from app.errors import (
    ConflictError,
    InvalidInputError,
    LimitError,
    NotFoundError,
    UnauthorizedError,
)
from app.models.domain.entity import Entity, Timestamp, utcnow

if TYPE_CHECKING:
    from app.services.magic_link_service import MagicLinkClient

BCRYPT_COST = 10
MAX_CONTACTS = 50

OAuthProvider = Literal["google", "facebook"]
OAUTH_PROVIDERS: tuple[str, ...] = ("google", "facebook")

_EMAIL_RE = re.compile(r"^[a-z0-9._%+\-]+@[a-z0-9.\-]+\.[a-z]{2,14}$")


def normalize_email(email: str) -> str:
    """Lowercase and validate an email address."""
    normalized = (email or "").strip().lower()
    if not _EMAIL_RE.match(normalized):
        raise InvalidInputError(
            "Invalid email", op="user.normalize_email", messages={"email": "This email is not valid"}
        )
    return normalized


def generate_token() -> str:
    # 32 random bytes, URL-safe
    return secrets.token_urlsafe(32)


def hash_password(password: str) -> str:
    if not password:
        raise InvalidInputError(
            "Invalid password", op="user.hash_password", messages={"password": "This field is required"}
        )
    try:
        digest = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_COST))
    except ValueError as e:
        raise InvalidInputError(
            "Invalid password",
            op="user.hash_password",
            messages={"password": "This password is too long"},
        ) from e
    return digest.decode("utf-8")


def derive_full_name(first_name: str, last_name: str) -> str:
    return f"{first_name} {last_name}".strip()


class UserPartial(BaseModel):
    """Snapshot of a user embedded in threads, events and messages."""

    id: str
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    avatar: str = ""

    @classmethod
    def placeholder(cls, key: Key) -> "UserPartial":
        return cls(id=key.encode(), full_name="Deleted user")


class User(Entity):
    KIND = "User"

    email: str
    first_name: str = ""
    last_name: str = ""
    password_digest: str = ""
    token: str = Field(default_factory=generate_token)
    oauth_google_id: str = ""
    oauth_facebook_id: str = ""
    verified: bool = False
    avatar: str = ""
    contact_keys: list[Key] = Field(default_factory=list)
    thread_keys: list[Key] = Field(default_factory=list)
    created_at: Timestamp = Field(default_factory=utcnow)

    # Email preferences
    send_digest: bool = True
    send_threads: bool = True
    send_events: bool = True

    @classmethod
    def new_with_password(cls, email: str, first_name: str, last_name: str, password: str) -> "User":
        return cls(
            email=normalize_email(email),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            password_digest=hash_password(password),
        )

    @classmethod
    def new_with_oauth(
        cls,
        email: str,
        first_name: str,
        last_name: str,
        provider: str,
        subject_id: str,
        avatar: str = "",
    ) -> "User":
        user = cls(
            email=normalize_email(email),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            avatar=avatar,
            verified=True,
        )
        user.link_oauth(provider, subject_id)
        return user

    @classmethod
    def new_incomplete(cls, email: str) -> "User":
        """A placeholder account for someone invited by email."""
        normalized = normalize_email(email)
        return cls(email=normalized, first_name=normalized.split("@")[0])

    @property
    def full_name(self) -> str:
        return derive_full_name(self.first_name, self.last_name)

    @property
    def is_password_set(self) -> bool:
        return bool(self.password_digest)

    @property
    def is_google_linked(self) -> bool:
        return bool(self.oauth_google_id)

    @property
    def is_facebook_linked(self) -> bool:
        return bool(self.oauth_facebook_id)

    @property
    def is_registered(self) -> bool:
        return (self.is_password_set or self.is_google_linked or self.is_facebook_linked) and self.verified

    def to_partial(self) -> UserPartial:
        full_name = self.full_name or self.email.split("@")[0]
        return UserPartial(
            id=self.id,
            first_name=self.first_name or full_name,
            last_name=self.last_name,
            full_name=full_name,
            avatar=self.avatar,
        )

    def link_oauth(self, provider: str, subject_id: str) -> None:
        if provider == "google":
            self.oauth_google_id = subject_id
        elif provider == "facebook":
            self.oauth_facebook_id = subject_id
        else:
            raise InvalidInputError(
                "Invalid provider",
                op="user.link_oauth",
                messages={"provider": f"Unsupported provider '{provider}'"},
            )

    def oauth_id(self, provider: str) -> str:
        if provider == "google":
            return self.oauth_google_id
        if provider == "facebook":
            return self.oauth_facebook_id
        return ""

    def check_password(self, candidate: str) -> bool:
        if not self.password_digest or not candidate:
            return False
        try:
            return bcrypt.checkpw(candidate.encode("utf-8"), self.password_digest.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def change_password(self, new_password: str) -> bool:
        try:
            self.password_digest = hash_password(new_password)
        except InvalidInputError:
            return False
        return True

    def add_thread(self, thread_key: Key) -> None:
        if not keys.contains(self.thread_keys, thread_key):
            self.thread_keys.append(thread_key)

    def remove_thread(self, thread_key: Key) -> None:
        keys.remove(self.thread_keys, thread_key)

    def has_contact(self, other: "User") -> bool:
        return keys.contains(self.contact_keys, other.key)

    def add_contact(self, other: "User") -> None:
        if keys.equal(self.key, other.key):
            raise InvalidInputError(
                "You cannot add yourself as a contact",
                op="user.add_contact",
                messages={"id": "You cannot add yourself as a contact"},
            )
        if self.has_contact(other):
            raise ConflictError(
                "You already have this contact",
                op="user.add_contact",
                messages={"id": "You already have this contact"},
            )
        if len(self.contact_keys) >= MAX_CONTACTS:
            raise LimitError(
                f"You can have a maximum of {MAX_CONTACTS} contacts",
                op="user.add_contact",
                messages={"id": f"You can have a maximum of {MAX_CONTACTS} contacts"},
            )
        self.contact_keys.append(other.key)

    def remove_contact(self, other: "User") -> None:
        if not keys.remove(self.contact_keys, other.key):
            raise NotFoundError(
                "You don't have this contact",
                op="user.remove_contact",
                messages={"id": "You don't have this contact"},
            )

    def get_password_reset_magic_link(self, magic: "MagicLinkClient") -> str:
        return magic.new_link(self.key, self.password_digest, "reset")

    def verify_password_reset_magic_link(
        self, magic: "MagicLinkClient", timestamp: str, signature: str
    ) -> None:
        magic.verify(self.id, timestamp, self.password_digest, signature)
        if magic.too_old(timestamp):
            raise UnauthorizedError("This link has expired", op="user.verify_password_reset")

    def get_verify_email_magic_link(self, magic: "MagicLinkClient") -> str:
        return magic.new_link(self.key, _bool_salt(self.verified), "verify")

    def verify_email_magic_link(self, magic: "MagicLinkClient", timestamp: str, signature: str) -> None:
        magic.verify(self.id, timestamp, _bool_salt(self.verified), signature)


def _bool_salt(value: bool) -> str:
    return "true" if value else "false"
