import pytest

from app.db.keys import Key
from app.errors import UnauthorizedError
from app.services.magic_link_service import SECONDS_PER_DAY, MagicLinkClient


def test_link_shape_and_verification(magic):
    key = Key(kind="User", id=12)

    link = magic.new_link(key, "salt", "reset", now=1_700_000_000)
    base, kenc, b64ts, signature = link.rsplit("/", 3)

    assert base == "https://app.test/reset"
    assert kenc == key.encode()
    assert len(signature) == 64
    magic.verify(kenc, b64ts, "salt", signature)


def test_verify_rejects_changed_salt_or_signature(magic):
    _, kenc, b64ts, signature = magic.new_link(Key(kind="User", id=1), "salt", "verify").rsplit("/", 3)

    with pytest.raises(UnauthorizedError):
        magic.verify(kenc, b64ts, "other-salt", signature)
    with pytest.raises(UnauthorizedError):
        magic.verify(kenc, b64ts, "salt", "0" * 64)


def test_signatures_depend_on_secret():
    key = Key(kind="User", id=1)
    first = MagicLinkClient("one", "https://app.test").new_link(key, "s", "verify", now=100)
    second = MagicLinkClient("two", "https://app.test").new_link(key, "s", "verify", now=100)

    assert first != second


def test_too_old(magic):
    _, _, b64ts, _ = magic.new_link(Key(kind="User", id=1), "s", "reset", now=1_000).rsplit("/", 3)

    assert not magic.too_old(b64ts, now=1_000 + SECONDS_PER_DAY - 1)
    assert magic.too_old(b64ts, now=1_000 + SECONDS_PER_DAY + 1)
    assert not magic.too_old(b64ts, days=7, now=1_000 + 2 * SECONDS_PER_DAY)


def test_too_old_rejects_garbage(magic):
    with pytest.raises(UnauthorizedError):
        magic.too_old("!!!")


def test_secret_is_required():
    with pytest.raises(ValueError):
        MagicLinkClient("", "https://app.test")
