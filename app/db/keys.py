"""
Entity handles.

A Key names a stored document by kind and numeric id. Its encoded form is
the URL-safe base64 of "Kind:id" without padding, used as the public id in
URLs and JSON. Keys are frozen and hashable, so list helpers dedupe on the
key value itself.
"""

import base64
import binascii
import re
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, model_serializer, model_validator

from app.errors import InvalidInputError

_KIND_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


class Key(BaseModel):
    """Handle for a stored entity. `id` is None until the store assigns one."""

    model_config = ConfigDict(frozen=True)

    kind: str
    id: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_encoded(cls, value: Any) -> Any:
        if isinstance(value, str):
            key = decode(value)
            return {"kind": key.kind, "id": key.id}
        return value

    @model_serializer
    def _serialize(self) -> str:
        return self.encode()

    @property
    def incomplete(self) -> bool:
        return self.id is None

    def encode(self) -> str:
        raw = f"{self.kind}:{'' if self.id is None else self.id}".encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    def __str__(self) -> str:
        return self.encode()


def encode(key: Key) -> str:
    return key.encode()


def decode(value: str) -> Key:
    """Parse an encoded handle, raising InvalidInputError when malformed."""
    malformed = InvalidInputError(
        "Malformed identifier", op="keys.decode", messages={"id": "Invalid identifier"}
    )
    if not value or not isinstance(value, str):
        raise malformed

    padded = value + "=" * (-len(value) % 4)
    try:
        raw = base64.b64decode(padded, altchars=b"-_", validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise malformed from None

    kind, sep, id_part = raw.partition(":")
    if not sep or not _KIND_RE.match(kind):
        raise malformed
    if id_part and not id_part.isdigit():
        raise malformed

    key = Key(kind=kind, id=int(id_part) if id_part else None)
    # Reject non-canonical spellings so decode stays the inverse of encode
    if key.encode() != value:
        raise malformed
    return key


def equal(a: Key | None, b: Key | None) -> bool:
    if a is None or b is None:
        return False
    return a.kind == b.kind and a.id == b.id


def contains(keys: Iterable[Key], key: Key) -> bool:
    return any(equal(k, key) for k in keys)


def index_of(keys: list[Key], key: Key) -> int:
    for i, k in enumerate(keys):
        if equal(k, key):
            return i
    return -1


def dedupe(keys: Iterable[Key]) -> list[Key]:
    """Drop repeated keys, keeping the first occurrence."""
    seen: set[Key] = set()
    result = []
    for key in keys:
        if key in seen:
            continue
        seen.add(key)
        result.append(key)
    return result


def swap(keys: Iterable[Key], old: Key, new: Key) -> list[Key]:
    """Replace every occurrence of old with new, then dedupe."""
    return dedupe(new if equal(k, old) else k for k in keys)


def remove(keys: list[Key], key: Key) -> bool:
    """
    Remove key in place by moving the last element into its slot.

    Returns True when the key was present.
    """
    i = index_of(keys, key)
    if i < 0:
        return False
    keys[i] = keys[-1]
    keys.pop()
    return True


def without(keys: Iterable[Key], key: Key) -> list[Key]:
    return [k for k in keys if not equal(k, key)]
