"""
Email fan-out.

Renders thread, event, digest and account emails and hands them to the
mail client. Fan-out methods send one email per recipient; a failed send is
logged and the remaining recipients still get theirs. The first failure is
returned so callers can decide whether to surface it.
"""

from app.db import keys
from app.infrastructure.observability.logging import get_logger
from app.models.domain.digest_domain import DigestItem
from app.models.domain.event_domain import Event
from app.models.domain.message_domain import Message
from app.models.domain.thread_domain import Thread
from app.models.domain.user_domain import User
from app.services.magic_link_service import MagicLinkClient
from app.services.mail.mail_client import EmailMessage, MailClient, MailError
from app.services.mail.templates import TemplateRenderer
from app.utils.text import collapse_whitespace

logger = get_logger(__name__)

ADMIN_FROM_NAME = "Convo"
ADMIN_FROM_EMAIL = "robots@mail.hiconvo.com"
PREVIEW_LENGTH = 200
THREAD_CONTEXT_MESSAGES = 5
SELF_ACCENT = "#999999"
OTHER_ACCENT = "#333333"

EVENT_TEXT_TEMPLATE = "%s invited you to:\n\n%s\n\n%s\n\n%s\n\n%s\n"
CANCELLATION_TEXT_TEMPLATE = "%s has cancelled:\n\n%s\n\n%s\n\n%s\n"
MESSAGE_TEXT_TEMPLATE = "%s said:\n\n%s\n\n"


def make_preview(text: str) -> str:
    return collapse_whitespace(text)[:PREVIEW_LENGTH]


def _author_first_name(message: Message) -> str:
    if message.user is None:
        return "Someone"
    return message.user.first_name or message.user.full_name or "Someone"


class MailService:
    def __init__(
        self,
        client: MailClient,
        renderer: TemplateRenderer,
        magic: MagicLinkClient,
        app_url: str,
    ):
        self.client = client
        self.renderer = renderer
        self.magic = magic
        self.app_url = app_url.rstrip("/")

    async def _deliver(self, message: EmailMessage) -> MailError | None:
        try:
            await self.client.send(message)
        except MailError as e:
            logger.error(
                "Email delivery failed",
                to_email=message.to_email,
                subject=message.subject,
                error=str(e),
            )
            return e
        return None

    def _message_views(self, messages: list[Message], to_id: str) -> list[dict]:
        views = []
        for message in messages:
            from_id = message.user_key.encode()
            is_self = from_id == to_id
            views.append(
                {
                    "from_id": from_id,
                    "to_id": to_id,
                    "accent": SELF_ACCENT if is_self else OTHER_ACCENT,
                    "name": "You" if is_self else (message.user.full_name if message.user else "Someone"),
                    "body": message.body,
                }
            )
        return views

    async def send_thread(
        self, thread: Thread, users: list[User], messages: list[Message]
    ) -> MailError | None:
        """
        Email the newest messages of a thread to every participant but the sender.

        Args:
            thread: Thread the messages belong to
            users: Participants to consider as recipients
            messages: Thread messages, newest first

        Returns:
            The first delivery error, if any
        """
        if not messages:
            return None

        latest = messages[0]
        context = messages[:THREAD_CONTEXT_MESSAGES]
        text = "".join(MESSAGE_TEXT_TEMPLATE % (_author_first_name(m), m.body) for m in context)
        preview = make_preview(text)
        from_name = latest.user.full_name if latest.user else ADMIN_FROM_NAME

        first_error = None
        for user in users:
            if keys.equal(user.key, latest.user_key) or not user.send_threads:
                continue

            page = self.renderer.render_page(
                "thread.html",
                preview,
                subject=thread.subject,
                messages=self._message_views(context, user.id),
            )
            error = await self._deliver(
                EmailMessage(
                    from_name=from_name,
                    from_email=thread.get_email(),
                    to_name=user.full_name,
                    to_email=user.email,
                    subject=thread.subject,
                    text_content=text,
                    html_content=page,
                )
            )
            first_error = first_error or error

        logger.info("Thread email fan-out finished", thread_id=thread.id, failed=first_error is not None)
        return first_error

    def _event_email(self, event: Event, user: User, updated: bool) -> EmailMessage:
        owner_name = event.owner.full_name if event.owner else ADMIN_FROM_NAME
        time = event.get_formatted_time()
        text = EVENT_TEXT_TEMPLATE % (owner_name, event.name, event.address, time, event.description)
        page = self.renderer.render_page(
            "event.html",
            make_preview(text),
            from_name=owner_name,
            verb="updated an invitation to" if updated else "invited you to",
            name=event.name,
            address=event.address,
            time=time,
            description=event.description,
            magic_link=event.get_rsvp_magic_link(self.magic, user),
            button_text="RSVP",
        )
        subject = ("Updated invitation to %s" if updated else "Invitation to %s") % event.name
        return EmailMessage(
            from_name=owner_name,
            from_email=event.get_email(),
            to_name=user.full_name,
            to_email=user.email,
            subject=subject,
            text_content=text,
            html_content=page,
            ics_attachment=event.get_ics(),
        )

    def _event_recipients(self, event: Event, users: list[User]) -> list[User]:
        return [u for u in users if not event.owner_is(u) and u.send_events]

    async def send_event(self, event: Event, users: list[User], updated: bool = False) -> MailError | None:
        first_error = None
        for user in self._event_recipients(event, users):
            error = await self._deliver(self._event_email(event, user, updated))
            first_error = first_error or error
        logger.info(
            "Event invitations sent",
            event_id=event.id,
            updated=updated,
            failed=first_error is not None,
        )
        return first_error

    async def send_invite_to_user(self, event: Event, user: User) -> MailError | None:
        return await self._deliver(self._event_email(event, user, updated=False))

    async def send_cancellation(self, event: Event, users: list[User], message: str = "") -> MailError | None:
        owner_name = event.owner.full_name if event.owner else ADMIN_FROM_NAME
        time = event.get_formatted_time()
        text = CANCELLATION_TEXT_TEMPLATE % (owner_name, event.name, event.address, time)
        if message:
            text += f"\n{message}\n"

        first_error = None
        for user in self._event_recipients(event, users):
            page = self.renderer.render_page(
                "cancellation.html",
                make_preview(text),
                from_name=owner_name,
                name=event.name,
                address=event.address,
                time=time,
                message=message,
            )
            error = await self._deliver(
                EmailMessage(
                    from_name=owner_name,
                    from_email=event.get_email(),
                    to_name=user.full_name,
                    to_email=user.email,
                    subject=f"Cancelled: {event.name}",
                    text_content=text,
                    html_content=page,
                )
            )
            first_error = first_error or error
        return first_error

    async def send_digest(self, user: User, items: list[DigestItem], upcoming: list[Event]) -> MailError | None:
        text_parts = []
        item_views = []
        for item in items:
            text_parts.append(f"{item.name}\n\n")
            text_parts.extend(MESSAGE_TEXT_TEMPLATE % (_author_first_name(m), m.body) for m in item.messages)
            item_views.append({"name": item.name, "messages": self._message_views(item.messages, user.id)})

        upcoming_views = [{"name": e.name, "time": e.get_formatted_time()} for e in upcoming]
        if upcoming_views:
            text_parts.insert(
                0, "Coming up:\n\n" + "".join(f"{e['name']}, {e['time']}\n" for e in upcoming_views) + "\n"
            )

        page = self.renderer.render_page(
            "digest.html",
            "You have notifications on Convo.",
            upcoming=upcoming_views,
            items=item_views,
            app_url=self.app_url,
        )
        return await self._deliver(
            EmailMessage(
                from_name=ADMIN_FROM_NAME,
                from_email=ADMIN_FROM_EMAIL,
                to_name=user.full_name,
                to_email=user.email,
                subject="[convo] Digest",
                text_content="".join(text_parts),
                html_content=page,
            )
        )

    async def _send_admin_email(
        self,
        to_name: str,
        to_email: str,
        subject: str,
        body: str,
        fine_print: str,
        button_text: str = "",
        magic_link: str = "",
    ) -> MailError | None:
        text = f"{body}\n\n{magic_link}\n" if magic_link else f"{body}\n"
        page = self.renderer.render_page(
            "admin.html",
            body,
            body=body,
            button_text=button_text,
            magic_link=magic_link,
            fine_print=fine_print,
        )
        return await self._deliver(
            EmailMessage(
                from_name=ADMIN_FROM_NAME,
                from_email=ADMIN_FROM_EMAIL,
                to_name=to_name,
                to_email=to_email,
                subject=subject,
                text_content=text,
                html_content=page,
            )
        )

    async def send_password_reset(self, user: User) -> MailError | None:
        return await self._send_admin_email(
            user.full_name,
            user.email,
            subject="[convo] Set Password",
            body="Please click the link below to set your password.",
            button_text="Set password",
            magic_link=user.get_password_reset_magic_link(self.magic),
            fine_print="If you didn't request a password reset, you can ignore this email.",
        )

    async def send_verify_email(self, user: User) -> MailError | None:
        return await self._send_admin_email(
            user.full_name,
            user.email,
            subject="[convo] Verify Email",
            body="Please click the link below to verify your email address.",
            button_text="Verify",
            magic_link=user.get_verify_email_magic_link(self.magic),
            fine_print="If you didn't create a Convo account, you can ignore this email.",
        )

    async def send_inbound_try_again(self, email: str) -> MailError | None:
        return await self._send_admin_email(
            "",
            email,
            subject="[convo] Message not delivered",
            body="We couldn't find the Convo you replied to. It may have been deleted. "
            "Please open Convo and post your message there.",
            fine_print="This is an automated message.",
        )

    async def send_inbound_error(self, email: str) -> MailError | None:
        return await self._send_admin_email(
            "",
            email,
            subject="[convo] Message not delivered",
            body="Your reply could not be posted because this address is not a member of the Convo. "
            "Reply from the address the Convo email was sent to.",
            fine_print="This is an automated message.",
        )
