import re
import unicodedata

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")


def slugify(value: str, max_length: int | None = None) -> str:
    """Lowercase ASCII slug with words joined by hyphens."""
    ascii_value = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    slug = _NON_ALNUM_RE.sub("-", ascii_value.lower()).strip("-")
    if max_length is not None:
        slug = slug[:max_length].rstrip("-")
    return slug


def natural_join(items: list[str]) -> str:
    """Join items as "A", "A and B" or "A, B and C"."""
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    return f"{', '.join(items[:-1])} and {items[-1]}"


def collapse_whitespace(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value or "").strip()


def truncate(value: str, length: int) -> str:
    if len(value) <= length:
        return value
    return value[: max(length - 3, 0)].rstrip() + "..."
