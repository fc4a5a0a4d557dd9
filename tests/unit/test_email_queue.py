import pytest
from pydantic import ValidationError

from app.errors import InternalError
from app.services.email_queue import EmailPayload, EmailQueue


def test_payload_validates_action_for_type():
    EmailPayload(type="Event", action="SendUpdatedInvites", ids=["abc"])

    with pytest.raises(ValidationError):
        EmailPayload(type="Thread", action="SendInvites", ids=["abc"])
    with pytest.raises(ValidationError):
        EmailPayload(type="User", action="SendWelcome", ids=[])


@pytest.mark.asyncio
async def test_queue_is_first_in_first_out(queue, fake_redis):
    first = EmailPayload(type="Thread", action="SendThread", ids=["t1"])
    second = EmailPayload(type="User", action="SendWelcome", ids=["u1"])

    await queue.put_email(first)
    await queue.put_email(second)

    assert len(fake_redis.lists["test-emails"]) == 2
    assert await queue.get_email(timeout=0) == first
    assert await queue.get_email(timeout=0) == second
    assert await queue.get_email(timeout=0) is None


@pytest.mark.asyncio
async def test_put_email_raises_when_push_fails():
    class FailingBackend:
        async def push_to_list(self, key: str, value: str) -> bool:
            return False

        async def pop_from_list(self, key: str, timeout: int = 0) -> str | None:
            return None

    with pytest.raises(InternalError):
        await EmailQueue(FailingBackend(), "q").put_email(
            EmailPayload(type="Thread", action="SendThread", ids=["t1"])
        )
