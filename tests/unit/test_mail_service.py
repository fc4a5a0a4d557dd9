import pytest
import pytest_asyncio

from app.services import event_service, message_service, thread_service
from app.services.mail.mail_client import MailError
from app.services.places_service import Place

PLACE = Place(place_id="p", address="The Park", lat=0.0, lng=0.0, utc_offset=0)


@pytest_asyncio.fixture
async def people(make_user):
    return (
        await make_user("Ann", "Lee"),
        await make_user("Bob", "Ray"),
        await make_user("Cat", "Yu", send_threads=False, send_events=False),
        await make_user("Dan", "Oz"),
    )


@pytest.mark.asyncio
async def test_thread_fan_out_skips_sender_and_opted_out(store, mail, mail_client, people):
    ann, bob, cat, dan = people
    thread = await thread_service.create_thread(store, ann, "Brunch", [bob, cat, dan])
    await message_service.create_thread_message(store, ann, thread, "Sunday at **11**?")

    error = await thread_service.send_thread(store, mail, thread)

    assert error is None
    assert sorted(m.to_email for m in mail_client.sent) == ["bob@example.com", "dan@example.com"]
    sent = mail_client.to("bob@example.com")[0]
    assert sent.subject == "Brunch"
    assert sent.from_name == "Ann Lee"
    assert sent.from_email == thread.get_email()
    assert "Ann said:" in sent.text_content
    assert "<strong>11</strong>" in sent.html_content


@pytest.mark.asyncio
async def test_thread_fan_out_continues_after_failure(store, mail, mail_client, people):
    ann, bob, _, dan = people
    thread = await thread_service.create_thread(store, ann, "Brunch", [bob, dan])
    await message_service.create_thread_message(store, ann, thread, "hello")
    mail_client.fail_for.add("bob@example.com")

    error = await thread_service.send_thread(store, mail, thread)

    assert isinstance(error, MailError)
    assert [m.to_email for m in mail_client.sent] == ["dan@example.com"]


@pytest.mark.asyncio
async def test_thread_without_messages_sends_nothing(store, mail, mail_client, people):
    ann, bob, _, _ = people
    thread = await thread_service.create_thread(store, ann, "Quiet", [bob])

    assert await thread_service.send_thread(store, mail, thread) is None
    assert mail_client.sent == []


@pytest.mark.asyncio
async def test_event_invites_skip_owner_and_carry_rsvp_links(store, mail, mail_client, magic, people, future):
    ann, bob, cat, dan = people
    event = await event_service.create_event(
        store,
        ann,
        name="Picnic",
        description="Blankets provided",
        place=PLACE,
        timestamp=future,
        hosts=[],
        users=[bob, cat, dan],
    )

    error = await event_service.send_invites(mail, event)

    assert error is None
    assert sorted(m.to_email for m in mail_client.sent) == ["bob@example.com", "dan@example.com"]
    sent = mail_client.to("bob@example.com")[0]
    assert sent.subject == "Invitation to Picnic"
    assert sent.ics_attachment.startswith("BEGIN:VCALENDAR")
    assert event.get_rsvp_magic_link(magic, bob).rsplit("/", 2)[0] in sent.html_content

    mail_client.sent.clear()
    await event_service.send_updated_invites(mail, event)
    assert mail_client.to("dan@example.com")[0].subject == "Updated invitation to Picnic"


@pytest.mark.asyncio
async def test_cancellation_includes_message(store, mail, mail_client, people, future):
    ann, bob, _, _ = people
    event = await event_service.create_event(
        store, ann, name="Picnic", description="", place=PLACE, timestamp=future, hosts=[], users=[bob]
    )

    await event_service.send_cancellation(mail, event, "Rain, sorry!")

    sent = mail_client.to("bob@example.com")[0]
    assert sent.subject == "Cancelled: Picnic"
    assert "Rain, sorry!" in sent.text_content


@pytest.mark.asyncio
async def test_account_emails(mail, mail_client, people):
    ann, _, _, _ = people

    assert await mail.send_verify_email(ann) is None
    assert await mail.send_password_reset(ann) is None

    subjects = [m.subject for m in mail_client.to("ann@example.com")]
    assert subjects == ["[convo] Verify Email", "[convo] Set Password"]
    assert "https://app.test/verify/" in mail_client.sent[0].text_content
    assert "https://app.test/reset/" in mail_client.sent[1].text_content
