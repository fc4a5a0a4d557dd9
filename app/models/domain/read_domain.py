"""
Read marks and the Readable capability.

Threads, Events and Messages carry a list of per-user read marks. The
helpers below work on anything exposing get_reads/set_reads.
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, Field

from app.db import keys
from app.db.keys import Key
from app.models.domain.entity import Timestamp, utcnow

if TYPE_CHECKING:
    from app.models.domain.user_domain import UserPartial


class Read(BaseModel):
    user_key: Key
    timestamp: Timestamp = Field(default_factory=utcnow)


class Readable(Protocol):
    def get_reads(self) -> list[Read]: ...

    def set_reads(self, reads: list[Read]) -> None: ...


def mark_as_read(readable: Readable, user_key: Key) -> None:
    if is_read(readable, user_key):
        return
    readable.set_reads([*readable.get_reads(), Read(user_key=user_key)])


def clear_reads(readable: Readable) -> None:
    readable.set_reads([])


def is_read(readable: Readable, user_key: Key) -> bool:
    return any(keys.equal(r.user_key, user_key) for r in readable.get_reads())


def map_reads_to_members(
    readable: Readable, members: Sequence["UserPartial"]
) -> list["UserPartial"]:
    """Member snapshots that have read the parent, in read order."""
    by_id = {m.id: m for m in members}
    result = []
    for read in readable.get_reads():
        member = by_id.get(read.user_key.encode())
        if member is not None:
            result.append(member)
    return result


def swap_read_user_keys(reads: Sequence[Read], old: Key, new: Key) -> list[Read]:
    """Rewrite old's marks to new, keeping one mark per user."""
    seen: set[Key] = set()
    result = []
    for read in reads:
        user_key = new if keys.equal(read.user_key, old) else read.user_key
        if user_key in seen:
            continue
        seen.add(user_key)
        result.append(Read(user_key=user_key, timestamp=read.timestamp))
    return result


class ReadableMixin:
    """get_reads/set_reads over a `reads` field declared by the model."""

    def get_reads(self) -> list[Read]:
        return self.reads

    def set_reads(self, reads: list[Read]) -> None:
        self.reads = reads
