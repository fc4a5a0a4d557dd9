"""
Error kinds shared by every layer.

Each error carries a breadcrumb of the operations it passed through, an
optional map of field -> human readable message, and the HTTP status the
outermost boundary should report. Errors below 500 are client-reportable;
everything else is reported as a generic failure and raised as an alarm.
"""

from typing import Self

GENERIC_MESSAGE = "Something went wrong"


class ConvoError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    default_message: str = GENERIC_MESSAGE

    def __init__(
        self,
        message: str | None = None,
        *,
        op: str | None = None,
        messages: dict[str, str] | None = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.messages: dict[str, str] = dict(messages or {})
        self.ops: list[str] = [op] if op else []

    def with_op(self, op: str) -> Self:
        """Record another layer the error passed through."""
        self.ops.append(op)
        return self

    @property
    def client_reportable(self) -> bool:
        return self.status_code < 500

    def client_report(self) -> dict[str, str]:
        if not self.client_reportable:
            return {"message": GENERIC_MESSAGE}
        payload = {"message": self.message}
        payload.update(self.messages)
        return payload

    def __str__(self) -> str:
        if not self.ops:
            return self.message
        return f"{': '.join(reversed(self.ops))}: {self.message}"


class InvalidInputError(ConvoError):
    status_code = 400
    default_message = "The request was invalid"


class UnauthorizedError(ConvoError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(ConvoError):
    status_code = 403
    default_message = "You do not have permission to do that"


class NotFoundError(ConvoError):
    status_code = 404
    default_message = "The requested resource was not found"


class ConflictError(ConvoError):
    status_code = 400
    default_message = "This conflicts with existing data"


class LimitError(ConvoError):
    status_code = 400
    default_message = "A limit has been reached"


class UnsupportedMediaError(ConvoError):
    status_code = 415
    default_message = "Unsupported content type"


class InternalError(ConvoError):
    status_code = 500


class DuplicateError(InternalError):
    """More than one stored record matched a lookup that must be unique."""


def wrap(op: str, exc: BaseException) -> ConvoError:
    """Attach a breadcrumb, converting foreign exceptions into InternalError."""
    if isinstance(exc, ConvoError):
        return exc.with_op(op)
    err = InternalError(f"{type(exc).__name__}: {exc}", op=op)
    err.__cause__ = exc
    return err
