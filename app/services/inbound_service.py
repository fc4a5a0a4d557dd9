"""
Inbound email replies.

Thread emails are sent from the thread's reply address
(`<slug>-<numeric id>@mail.hiconvo.com`). When a participant replies, the mail
provider posts the parsed message to /inbound. The thread id is read back out
of the address, the reply text is separated from quoted history and
signatures, and the result is added to the thread as a new message.
"""

import html
import json
import re
from email.utils import parseaddr

from bs4 import BeautifulSoup

from app.db.document_store import DocumentStore
from app.db.keys import Key
from app.errors import ForbiddenError, InvalidInputError, NotFoundError
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.models.domain.message_domain import Message
from app.models.domain.thread_domain import Thread
from app.services import message_service, thread_service, user_service
from app.services.mail.mail_service import MailService

logger = get_logger(__name__)

# hyphen, en dash, em dash, minus
TRAILING_DASHES = "-\u2013\u2014\u2212"

_ON_WROTE_RE = re.compile(r"^\s*On\b.*\bwrote:\s*$", re.IGNORECASE)
_SEPARATOR_RES = (
    re.compile(r"^\s*-{2,}\s*Original Message\s*-{2,}\s*$", re.IGNORECASE),
    re.compile(r"^\s*_{10,}\s*$"),
    re.compile(r"^\s*From:\s.+$"),
    re.compile(r"^\s*Sent from my\s.+$", re.IGNORECASE),
    re.compile(r"^--\s?$"),
)


def addresses_from_envelope(envelope: str) -> tuple[str, str]:
    """
    Read the recipient and sender addresses from the provider's JSON envelope.

    Returns:
        (to_address, from_address)

    Raises:
        InvalidInputError: malformed envelope or more than one recipient
    """
    op = "inbound_service.addresses_from_envelope"
    try:
        data = json.loads(envelope or "")
    except json.JSONDecodeError:
        raise InvalidInputError("Invalid envelope", op=op) from None
    if not isinstance(data, dict):
        raise InvalidInputError("Invalid envelope", op=op)

    to_list = data.get("to")
    if not isinstance(to_list, list) or not to_list:
        raise InvalidInputError("Invalid 'to' address type", op=op)
    if len(to_list) > 1:
        raise InvalidInputError("Multiple recipients are not supported", op=op)
    sender = data.get("from")
    if not isinstance(to_list[0], str) or not isinstance(sender, str):
        raise InvalidInputError("Invalid address type", op=op)

    _, to_address = parseaddr(to_list[0])
    _, from_address = parseaddr(sender)
    if "@" not in to_address:
        raise InvalidInputError("Invalid 'to' address", op=op)
    if "@" not in from_address:
        raise InvalidInputError("Invalid 'from' address", op=op)
    return to_address, from_address


def thread_id_from_address(address: str) -> int:
    """Numeric thread id from `<slug>-<id>@domain`."""
    local_part = address.split("@", 1)[0]
    candidate = local_part.rsplit("-", 1)[-1]
    if not candidate.isdigit():
        raise InvalidInputError("Address does not name a Convo", op="inbound_service.thread_id_from_address")
    return int(candidate)


def strip_replies_and_signature(text: str) -> str:
    """Keep only the new text above quoted history and signatures."""
    lines = text.replace("\r\n", "\n").split("\n")
    kept = []
    for i, line in enumerate(lines):
        if line.lstrip().startswith(">"):
            break
        if _ON_WROTE_RE.match(line):
            break
        # Clients wrap long attribution lines before "wrote:"
        if line.lstrip().startswith("On ") and i + 1 < len(lines) and lines[i + 1].rstrip().endswith("wrote:"):
            break
        if any(r.match(line) for r in _SEPARATOR_RES):
            break
        kept.append(line)
    return "\n".join(kept)


def extract_reply_text(html_body: str, text_body: str) -> str:
    """Reply text of an inbound email, preferring the plain text part."""
    if text_body and text_body.strip():
        body = text_body
    else:
        body = BeautifulSoup(html_body or "", "html.parser").get_text("\n")
    message = strip_replies_and_signature(html.unescape(body))
    return message.strip().rstrip(TRAILING_DASHES).strip()


async def handle_inbound(
    store: DocumentStore,
    mail: MailService,
    envelope: str,
    html_body: str,
    text_body: str,
) -> Message:
    """
    Add an emailed reply to its thread and email it to the other participants.

    Senders that cannot post to the thread are told so by email.

    Raises:
        InvalidInputError: unreadable envelope, address or empty reply
        NotFoundError: the thread or the sender does not exist
        ForbiddenError: the sender is not a participant
    """
    op = "inbound_service.handle_inbound"
    to_address, from_address = addresses_from_envelope(envelope)
    thread_id = thread_id_from_address(to_address)

    try:
        thread = await thread_service.get_thread_by_key(store, Key(kind=Thread.KIND, id=thread_id))
    except NotFoundError as e:
        await mail.send_inbound_try_again(from_address)
        raise e.with_op(op)

    user = await user_service.get_user_by_email(store, from_address)
    if user is None:
        await mail.send_inbound_error(from_address)
        raise NotFoundError("Email not recognized", op=op)
    if not thread.is_participant(user):
        await mail.send_inbound_error(from_address)
        raise ForbiddenError("Sender is not in this Convo", op=op)

    body = extract_reply_text(html_body, text_body)
    if not body:
        raise InvalidInputError("The reply was empty", op=op, messages={"body": "This field is required"})

    message = await message_service.create_thread_message(store, user, thread, body)

    error = await thread_service.send_thread(store, mail, thread)
    if error is not None:
        log_alarm(error.with_op(op), thread_id=thread.id)

    logger.info("Inbound reply added", thread_id=thread.id, message_id=message.id, user_id=user.id)
    return message
