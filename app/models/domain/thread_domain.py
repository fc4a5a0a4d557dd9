from datetime import datetime

from pydantic import BaseModel, Field

from app.db import keys
from app.db.keys import Key
from app.models.domain.entity import Entity, Timestamp, utcnow
from app.models.domain.read_domain import Read, ReadableMixin, map_reads_to_members
from app.models.domain.user_domain import User, UserPartial
from app.utils.text import natural_join, slugify

THREAD_MAIL_DOMAIN = "mail.hiconvo.com"


class Preview(BaseModel):
    body: str
    sender: UserPartial
    timestamp: Timestamp


class Thread(ReadableMixin, Entity):
    """
    A conversation with an owner and a set of members.

    The owner is stored in `owner_key` only; `member_keys` never holds it.
    """

    KIND = "Thread"

    owner_key: Key
    member_keys: list[Key] = Field(default_factory=list)
    subject: str = ""
    preview: Preview | None = None
    reads: list[Read] = Field(default_factory=list)
    response_count: int = 0
    created_at: Timestamp = Field(default_factory=utcnow)

    # Hydrated views, never stored
    owner: UserPartial | None = Field(default=None, exclude=True)
    members: list[UserPartial] = Field(default_factory=list, exclude=True)
    users: list[User] = Field(default_factory=list, exclude=True)

    @classmethod
    def new(cls, subject: str, owner: User, users: list[User]) -> "Thread":
        members: list[User] = []
        for user in users:
            if keys.equal(user.key, owner.key) or any(keys.equal(user.key, m.key) for m in members):
                continue
            members.append(user)

        thread = cls(
            owner_key=owner.key,
            member_keys=[m.key for m in members],
            subject=subject.strip() or default_subject(owner, members),
        )
        thread.splice([owner, *members])
        return thread

    @property
    def participant_keys(self) -> list[Key]:
        return [self.owner_key, *self.member_keys]

    def splice(self, users: list[User | None]) -> None:
        """Attach fetched users, owner first, in participant order."""
        participant_keys = self.participant_keys
        partials = []
        full_users = []
        for key, user in zip(participant_keys, users, strict=False):
            if user is None:
                partials.append(UserPartial.placeholder(key))
            else:
                partials.append(user.to_partial())
                full_users.append(user)
        self.owner = partials[0] if partials else None
        self.members = partials[1:]
        self.users = full_users

    def owner_is(self, user: User) -> bool:
        return keys.equal(self.owner_key, user.key)

    def has_user(self, user: User) -> bool:
        return keys.contains(self.member_keys, user.key)

    def is_participant(self, user: User) -> bool:
        return self.owner_is(user) or self.has_user(user)

    def add_user(self, user: User) -> bool:
        """Add a member. Returns False when the user is already a participant."""
        if self.is_participant(user):
            return False
        self.member_keys.append(user.key)
        self.members.append(user.to_partial())
        self.users.append(user)
        return True

    def remove_user(self, user: User) -> bool:
        index = keys.index_of(self.member_keys, user.key)
        if index < 0:
            return False
        keys.remove(self.member_keys, user.key)

        user_id = user.id
        for i, partial in enumerate(self.members):
            if partial.id == user_id:
                self.members[i] = self.members[-1]
                self.members.pop()
                break
        self.users = [u for u in self.users if not keys.equal(u.key, user.key)]
        return True

    def set_preview(self, body: str, sender: User, timestamp: datetime) -> None:
        self.preview = Preview(body=body, sender=sender.to_partial(), timestamp=timestamp)

    def increment_response_count(self) -> None:
        self.response_count += 1

    def get_name(self) -> str:
        return self.subject

    def get_email(self) -> str:
        return f"{slugify(self.subject, 20) or 'convo'}-{self.numeric_id}@{THREAD_MAIL_DOMAIN}"

    def user_reads(self) -> list[UserPartial]:
        return map_reads_to_members(self, [p for p in [self.owner, *self.members] if p])


def default_subject(owner: User, members: list[User]) -> str:
    owner_name = owner.first_name or owner.to_partial().first_name
    if not members:
        return f"{owner_name}'s Private Convo"
    names = [m.to_partial().full_name for m in members]
    return f"{owner_name} with {natural_join(names)}"
