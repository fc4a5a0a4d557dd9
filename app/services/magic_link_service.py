"""
Signed magic links.

A link has the shape {APP_URL}/{action}/{kenc}/{b64ts}/{signature} where the
signature is a hex HMAC-SHA256 over kenc + b64ts + salt. The salt is a value
that changes once the link has been used (a password digest, a verified
flag, an event token), which invalidates every sibling link.
"""

import base64
import binascii
import hashlib
import hmac
import time

from app.db.keys import Key
from app.errors import UnauthorizedError

SECONDS_PER_DAY = 24 * 60 * 60


def _encode_timestamp(ts: int) -> str:
    return base64.urlsafe_b64encode(str(ts).encode()).decode("ascii")


def _decode_timestamp(b64ts: str) -> int:
    try:
        return int(base64.urlsafe_b64decode(b64ts.encode("ascii")).decode("ascii"))
    except (binascii.Error, UnicodeError, ValueError):
        raise UnauthorizedError("Invalid link", op="magic.decode_timestamp") from None


class MagicLinkClient:
    def __init__(self, secret: str, base_url: str, ttl_days: int = 1):
        if not secret:
            raise ValueError("A magic link secret is required")
        self._secret = secret.encode("utf-8")
        self.base_url = base_url.rstrip("/")
        self.ttl_days = ttl_days

    def _sign(self, kenc: str, b64ts: str, salt: str) -> str:
        payload = f"{kenc}{b64ts}{salt}".encode()
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def new_link(self, key: Key, salt: str, action: str, now: float | None = None) -> str:
        kenc = key.encode()
        b64ts = _encode_timestamp(int(now if now is not None else time.time()))
        signature = self._sign(kenc, b64ts, salt)
        return f"{self.base_url}/{action}/{kenc}/{b64ts}/{signature}"

    def verify(self, kenc: str, b64ts: str, salt: str, signature: str) -> None:
        expected = self._sign(kenc, b64ts, salt)
        if not hmac.compare_digest(expected, signature or ""):
            raise UnauthorizedError("Invalid link", op="magic.verify")

    def too_old(self, b64ts: str, days: int | None = None, now: float | None = None) -> bool:
        issued = _decode_timestamp(b64ts)
        window = (days if days is not None else self.ttl_days) * SECONDS_PER_DAY
        current = now if now is not None else time.time()
        return current - issued > window
