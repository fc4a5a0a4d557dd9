from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from pydantic import Field

from app.db import keys
from app.db.keys import Key
from app.errors import ConflictError, ForbiddenError, InvalidInputError, LimitError, NotFoundError
from app.models.domain.entity import Entity, Timestamp, utcnow
from app.models.domain.read_domain import Read, ReadableMixin, clear_reads, map_reads_to_members
from app.models.domain.user_domain import User, UserPartial, generate_token
from app.utils.ics import build_event_ics
from app.utils.text import slugify

if TYPE_CHECKING:
    from app.services.magic_link_service import MagicLinkClient

EVENT_MAIL_DOMAIN = "mail.convo.events"
MAX_EVENT_MEMBERS = 300
UPCOMING_WINDOW_START = timedelta(hours=6)
UPCOMING_WINDOW_END = timedelta(hours=30)


class Event(ReadableMixin, Entity):
    """
    A scheduled gathering.

    `user_keys` (invitees) always holds the owner and every host. RSVPs are a
    subset of invitees and never include the owner.
    """

    KIND = "Event"

    owner_key: Key
    host_keys: list[Key] = Field(default_factory=list)
    user_keys: list[Key] = Field(default_factory=list)
    rsvp_keys: list[Key] = Field(default_factory=list)
    place_id: str = ""
    address: str = ""
    lat: float = 0.0
    lng: float = 0.0
    name: str
    description: str = ""
    timestamp: Timestamp
    utc_offset: int = 0
    # Legacy records predate this field and load as False
    guests_can_invite: bool = False
    token: str = Field(default_factory=generate_token)
    reads: list[Read] = Field(default_factory=list)
    created_at: Timestamp = Field(default_factory=utcnow)

    # Hydrated views, never stored
    owner: UserPartial | None = Field(default=None, exclude=True)
    hosts: list[UserPartial] = Field(default_factory=list, exclude=True)
    members: list[UserPartial] = Field(default_factory=list, exclude=True)
    rsvps: list[UserPartial] = Field(default_factory=list, exclude=True)
    users: list[User] = Field(default_factory=list, exclude=True)

    @classmethod
    def new(
        cls,
        *,
        name: str,
        description: str,
        place_id: str,
        address: str,
        lat: float,
        lng: float,
        timestamp: datetime,
        utc_offset: int,
        owner: User,
        hosts: list[User],
        users: list[User],
        guests_can_invite: bool = False,
        now: datetime | None = None,
    ) -> "Event":
        current = now or utcnow()
        if timestamp <= current:
            raise InvalidInputError(
                "Invalid time",
                op="event.new",
                messages={"time": "Your event must be in the future"},
            )

        invitees = _unique_users([*users, owner])
        host_users = [h for h in _unique_users(hosts) if not keys.equal(h.key, owner.key)]
        for host in host_users:
            if not any(keys.equal(host.key, u.key) for u in invitees):
                invitees.append(host)

        if len(invitees) > MAX_EVENT_MEMBERS:
            raise LimitError(
                f"Events have a maximum of {MAX_EVENT_MEMBERS} members",
                op="event.new",
                messages={"users": f"Events have a maximum of {MAX_EVENT_MEMBERS} members"},
            )

        event = cls(
            name=name,
            description=description,
            place_id=place_id,
            address=address,
            lat=lat,
            lng=lng,
            timestamp=timestamp,
            utc_offset=utc_offset,
            owner_key=owner.key,
            host_keys=[h.key for h in host_users],
            user_keys=[u.key for u in invitees],
            guests_can_invite=guests_can_invite,
        )
        event.splice(invitees)
        return event

    def splice(self, users: list[User | None]) -> None:
        """Attach fetched invitees, aligned with `user_keys`."""
        partials: dict[Key, UserPartial] = {}
        full_users = []
        for key, user in zip(self.user_keys, users, strict=False):
            if user is None:
                partials[key] = UserPartial.placeholder(key)
            else:
                partials[key] = user.to_partial()
                full_users.append(user)

        def lookup(key: Key) -> UserPartial:
            return partials.get(key) or UserPartial.placeholder(key)

        self.owner = lookup(self.owner_key)
        self.members = [lookup(k) for k in self.user_keys]
        self.hosts = [lookup(k) for k in self.host_keys]
        self.rsvps = [lookup(k) for k in self.rsvp_keys]
        self.users = full_users

    def owner_is(self, user: User) -> bool:
        return keys.equal(self.owner_key, user.key)

    def has_user(self, user: User) -> bool:
        return keys.contains(self.user_keys, user.key)

    def has_rsvp(self, user: User) -> bool:
        return keys.contains(self.rsvp_keys, user.key)

    def is_host(self, user: User) -> bool:
        return keys.contains(self.host_keys, user.key)

    def can_invite(self, user: User) -> bool:
        return self.owner_is(user) or self.is_host(user) or (self.guests_can_invite and self.has_user(user))

    def add_user(self, user: User) -> None:
        if self.owner_is(user) or self.has_user(user):
            raise ConflictError(
                "This user is already invited to this event",
                op="event.add_user",
                messages={"message": "This user is already invited to this event"},
            )
        if len(self.user_keys) >= MAX_EVENT_MEMBERS:
            raise LimitError(
                "This event has the maximum number of guests",
                op="event.add_user",
                messages={"message": "This event has the maximum number of guests"},
            )
        self.user_keys.append(user.key)
        self.members.append(user.to_partial())
        self.users.append(user)

    def remove_user(self, user: User) -> None:
        if self.owner_is(user):
            raise InvalidInputError(
                "You cannot remove yourself from your own event",
                op="event.remove_user",
                messages={"message": "You cannot remove yourself from your own event"},
            )
        if not keys.remove(self.user_keys, user.key):
            raise NotFoundError(
                "This user is not invited to this event",
                op="event.remove_user",
                messages={"message": "This user is not invited to this event"},
            )
        keys.remove(self.host_keys, user.key)
        keys.remove(self.rsvp_keys, user.key)
        self._drop_partial(user)

    def add_rsvp(self, user: User) -> None:
        if not self.has_user(user):
            raise ForbiddenError(
                "You are not invited to this event",
                op="event.add_rsvp",
                messages={"message": "You are not invited to this event"},
            )
        if self.owner_is(user) or self.has_rsvp(user):
            raise ConflictError(
                "You have already RSVP'd",
                op="event.add_rsvp",
                messages={"message": "You have already RSVP'd"},
            )
        self.rsvp_keys.append(user.key)
        self.rsvps.append(user.to_partial())
        clear_reads(self)

    def remove_rsvp(self, user: User) -> None:
        if not self.has_user(user):
            raise NotFoundError(
                "You are not invited to this event",
                op="event.remove_rsvp",
                messages={"message": "You are not invited to this event"},
            )
        if self.owner_is(user):
            raise InvalidInputError(
                "You cannot remove yourself from your own event",
                op="event.remove_rsvp",
                messages={"message": "You cannot remove yourself from your own event"},
            )
        keys.remove(self.rsvp_keys, user.key)
        self.rsvps = [p for p in self.rsvps if p.id != user.id]

    def set_hosts(self, hosts: list[User]) -> None:
        """Replace the host set, inviting any host not yet invited."""
        host_users = [h for h in _unique_users(hosts) if not self.owner_is(h)]
        missing = [h for h in host_users if not self.has_user(h)]
        if len(self.user_keys) + len(missing) > MAX_EVENT_MEMBERS:
            raise LimitError(
                "This event has the maximum number of guests",
                op="event.set_hosts",
                messages={"message": "This event has the maximum number of guests"},
            )
        for host in missing:
            self.user_keys.append(host.key)
            self.members.append(host.to_partial())
            self.users.append(host)
        self.host_keys = [h.key for h in host_users]
        self.hosts = [h.to_partial() for h in host_users]

    def _drop_partial(self, user: User) -> None:
        user_id = user.id
        self.members = [p for p in self.members if p.id != user_id]
        self.hosts = [p for p in self.hosts if p.id != user_id]
        self.rsvps = [p for p in self.rsvps if p.id != user_id]
        self.users = [u for u in self.users if not keys.equal(u.key, user.key)]

    def is_in_future(self, now: datetime | None = None) -> bool:
        return self.timestamp > (now or utcnow())

    def is_upcoming(self, now: datetime | None = None) -> bool:
        current = now or utcnow()
        return current + UPCOMING_WINDOW_START <= self.timestamp <= current + UPCOMING_WINDOW_END

    def local_time(self) -> datetime:
        return self.timestamp.astimezone(timezone(timedelta(seconds=self.utc_offset)))

    def get_formatted_time(self) -> str:
        """Render like "Monday, January 2 @ 3:04 PM" in the event's offset."""
        local = self.local_time()
        hour = local.hour % 12 or 12
        meridiem = "AM" if local.hour < 12 else "PM"
        return f"{local:%A}, {local:%B} {local.day} @ {hour}:{local:%M} {meridiem}"

    def get_name(self) -> str:
        return self.name

    def get_email(self) -> str:
        return f"{slugify(self.name, 20) or 'event'}-{self.numeric_id}@{EVENT_MAIL_DOMAIN}"

    def get_ics(self) -> str:
        return build_event_ics(self)

    def user_reads(self) -> list[UserPartial]:
        return map_reads_to_members(self, self.members)

    def roll_token(self) -> None:
        self.token = generate_token()

    def _rsvp_salt(self) -> str:
        # Links stop working once the event has started
        return self.token + str(not self.is_in_future()).lower()

    def get_invite_magic_link(self, magic: "MagicLinkClient") -> str:
        return magic.new_link(self.key, self.token, "invite")

    def verify_invite_magic_link(self, magic: "MagicLinkClient", timestamp: str, signature: str) -> None:
        magic.verify(self.id, timestamp, self.token, signature)

    def get_rsvp_magic_link(self, magic: "MagicLinkClient", user: User) -> str:
        return magic.new_link(user.key, self._rsvp_salt(), f"rsvp/{self.id}")

    def verify_rsvp_magic_link(
        self, magic: "MagicLinkClient", user_id: str, timestamp: str, signature: str
    ) -> None:
        magic.verify(user_id, timestamp, self._rsvp_salt(), signature)


def _unique_users(users: list[User]) -> list[User]:
    result: list[User] = []
    for user in users:
        if not any(keys.equal(user.key, u.key) for u in result):
            result.append(user)
    return result
