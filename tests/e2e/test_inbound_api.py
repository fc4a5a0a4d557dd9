import asyncio
import json

from app.services import thread_service


def _auth(user: dict) -> dict:
    return {"Authorization": f"Bearer {user['token']}"}


def _signup(api, first_name: str) -> dict:
    response = api.post(
        "/users",
        json={
            "email": f"{first_name.lower()}@example.com",
            "firstName": first_name,
            "password": "correct-horse",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def _inbound_form(to: str, sender: str, text: str) -> dict:
    return {
        "to": to,
        "from": sender,
        "text": text,
        "html": f"<html><body><p>{text}</p></body></html>",
        "envelope": json.dumps({"to": [to], "from": sender}),
        "subject": "Re: Brunch",
        "SPF": "pass",
    }


def test_emailed_reply_is_posted_to_thread(api, clients, mail_client):
    ann, bob = _signup(api, "Ann"), _signup(api, "Bob")
    created = api.post(
        "/threads", headers=_auth(ann), json={"subject": "Brunch", "users": [bob["id"]], "body": "Sunday?"}
    ).json()
    thread = asyncio.run(thread_service.get_thread_by_id(clients.store, created["id"]))

    response = api.post("/inbound", data=_inbound_form(thread.get_email(), "bob@example.com", "Hello, does this work?"))

    assert response.status_code == 200
    assert response.json()["status"] == "PASS"
    messages = api.get(f"/threads/{created['id']}/messages", headers=_auth(ann)).json()["messages"]
    assert [m["body"] for m in messages] == ["Hello, does this work?", "Sunday?"]
    assert messages[0]["id"] == response.json()["messageId"]
    assert mail_client.to("ann@example.com")[-1].subject == "Brunch"


def test_rejected_reply_is_acknowledged(api, clients, mail_client):
    ann, bob = _signup(api, "Ann"), _signup(api, "Bob")
    created = api.post(
        "/threads", headers=_auth(ann), json={"subject": "Brunch", "users": [bob["id"]], "body": "Sunday?"}
    ).json()
    thread = asyncio.run(thread_service.get_thread_by_id(clients.store, created["id"]))

    response = api.post("/inbound", data=_inbound_form(thread.get_email(), "mallory@example.com", "let me in"))

    assert response.status_code == 200
    assert response.json() == {"status": "FAIL", "messageId": None}
    assert mail_client.to("mallory@example.com")[-1].subject == "[convo] Message not delivered"

    garbage = api.post("/inbound", data={"envelope": "nope", "text": "hi"})
    assert garbage.status_code == 200
    assert garbage.json()["status"] == "FAIL"
