import asyncio
import json
from datetime import timedelta

from app.models.domain.entity import utcnow
from app.services import event_service, user_service


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


def _create_event(api, owner: dict, users: list[str], **fields) -> dict:
    body = {
        "name": "Picnic",
        "description": "Bring a blanket",
        "placeId": "ChIJ-park",
        "timestamp": (utcnow() + timedelta(days=3)).isoformat(),
        "utcOffset": -420,
        "users": users,
        **fields,
    }
    response = api.post("/events", headers=_auth(owner), json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_list_events(api, clients, fake_redis):
    ann, bob, cat = _signup(api, "Ann"), _signup(api, "Bob"), _signup(api, "Cat")

    event = _create_event(api, ann, [bob["id"], "dan@example.com"], hosts=[cat["id"]])

    assert event["owner"]["id"] == ann["id"]
    assert event["utcOffset"] == -420 * 60
    assert event["address"].startswith("Pioneer Square")
    assert [h["id"] for h in event["hosts"]] == [cat["id"]]
    assert {u["id"] for u in event["users"]} >= {ann["id"], bob["id"], cat["id"]}
    assert len(event["users"]) == 4

    payloads = [json.loads(item) for item in fake_redis.lists["test-emails"]]
    assert {"type": "Event", "action": "SendInvites", "ids": [event["id"]]} in payloads
    assert clients.notifications.notifications[-1].verb == "NewEvent"

    listed = api.get("/events", headers=_auth(bob)).json()["events"]
    assert [e["id"] for e in listed] == [event["id"]]
    assert api.get(f"/events/{event['id']}", headers=_auth(bob)).status_code == 200

    stranger = _signup(api, "Eve")
    assert api.get(f"/events/{event['id']}", headers=_auth(stranger)).status_code == 404


def test_create_event_in_the_past_is_rejected(api):
    ann = _signup(api, "Ann")

    response = api.post(
        "/events",
        headers=_auth(ann),
        json={
            "name": "Yesterday",
            "placeId": "ChIJ-park",
            "timestamp": (utcnow() - timedelta(days=1)).isoformat(),
        },
    )

    assert response.status_code == 400
    assert response.json()["time"] == "Your event must be in the future"


def test_rsvp_and_messages(api, clients):
    ann, bob = _signup(api, "Ann"), _signup(api, "Bob")
    event = _create_event(api, ann, [bob["id"]])
    url = f"/events/{event['id']}"

    rsvp = api.post(f"{url}/rsvps", headers=_auth(bob))
    assert rsvp.status_code == 200
    assert [r["id"] for r in rsvp.json()["rsvps"]] == [bob["id"]]
    notification = clients.notifications.notifications[-1]
    assert notification.verb == "AddRSVP"
    assert [k.encode() for k in notification.user_keys] == [ann["id"]]

    assert api.post(f"{url}/rsvps", headers=_auth(bob)).status_code == 400
    assert api.post(f"{url}/rsvps", headers=_auth(ann)).status_code == 400
    assert api.delete(f"{url}/rsvps", headers=_auth(bob)).json()["rsvps"] == []

    message = api.post(f"{url}/messages", headers=_auth(bob), json={"body": "Can I bring a dog?"})
    assert message.status_code == 201
    messages = api.get(f"{url}/messages", headers=_auth(ann)).json()["messages"]
    assert [m["body"] for m in messages] == ["Can I bring a dog?"]

    read = api.post(f"{url}/reads", headers=_auth(ann)).json()
    assert sorted(u["id"] for u in read["userReads"]) == sorted([ann["id"], bob["id"]])


def test_magic_rsvp_logs_in_invitee(api, clients, magic):
    ann = _signup(api, "Ann")
    event = _create_event(api, ann, ["dan@example.com"])
    stored = asyncio.run(event_service.get_event_by_id(clients.store, event["id"]))
    dan = asyncio.run(user_service.get_user_by_email(clients.store, "dan@example.com"))

    link = stored.get_rsvp_magic_link(magic, dan)
    prefix, event_id, kenc, b64ts, signature = link.rsplit("/", 4)
    assert prefix == "https://app.test/rsvp"
    assert event_id == event["id"]

    bad = api.post(
        "/events/rsvps",
        json={"userId": kenc, "eventId": event_id, "timestamp": b64ts, "signature": "f" * 64},
    )
    assert bad.status_code == 401

    response = api.post(
        "/events/rsvps",
        json={"userId": kenc, "eventId": event_id, "timestamp": b64ts, "signature": signature},
    )
    assert response.status_code == 200
    assert response.json()["id"] == dan.id
    assert response.json()["token"] == dan.token

    fetched = api.get(f"/events/{event['id']}", headers=_auth(ann)).json()
    assert [r["id"] for r in fetched["rsvps"]] == [dan.id]

    # Repeating the link is harmless
    assert api.post(
        "/events/rsvps",
        json={"userId": kenc, "eventId": event_id, "timestamp": b64ts, "signature": signature},
    ).status_code == 200


def test_update_event(api, fake_redis):
    ann, bob = _signup(api, "Ann"), _signup(api, "Bob")
    event = _create_event(api, ann, [bob["id"]])
    url = f"/events/{event['id']}"

    assert api.patch(url, headers=_auth(bob), json={"name": "Mine now"}).status_code == 403

    updated = api.patch(url, headers=_auth(ann), json={"name": "Beach day", "guestsCanInvite": True})
    assert updated.status_code == 200
    assert updated.json()["name"] == "Beach day"
    assert updated.json()["guestsCanInvite"] is True
    payloads = [json.loads(item) for item in fake_redis.lists["test-emails"]]
    assert {"type": "Event", "action": "SendUpdatedInvites", "ids": [event["id"]]} in payloads

    invited = api.post(f"{url}/users/carl@example.com", headers=_auth(bob))
    assert invited.status_code == 200
    assert len(invited.json()["users"]) == 3


def test_invite_and_remove_users(api, mail_client):
    ann, bob, cat = _signup(api, "Ann"), _signup(api, "Bob"), _signup(api, "Cat")
    event = _create_event(api, ann, [bob["id"]])
    url = f"/events/{event['id']}"

    assert api.post(f"{url}/users/{cat['id']}", headers=_auth(bob)).status_code == 403
    assert api.post(f"{url}/users/{cat['id']}", headers=_auth(ann)).status_code == 200
    assert [m.subject for m in mail_client.to("cat@example.com")][-1] == "Invitation to Picnic"
    assert api.post(f"{url}/users/{cat['id']}", headers=_auth(ann)).status_code == 400

    assert api.delete(f"{url}/users/{ann['id']}", headers=_auth(ann)).status_code == 400
    removed = api.delete(f"{url}/users/{cat['id']}", headers=_auth(cat))
    assert removed.status_code == 200
    assert api.get(url, headers=_auth(cat)).status_code == 404


def test_cancel_event_emails_guests(api, mail_client):
    ann, bob = _signup(api, "Ann"), _signup(api, "Bob")
    event = _create_event(api, ann, [bob["id"]])
    url = f"/events/{event['id']}"

    assert api.delete(url, headers=_auth(bob)).status_code == 403

    response = api.request("DELETE", url, headers=_auth(ann), json={"message": "Rain, sorry!"})
    assert response.status_code == 200

    cancellation = mail_client.to("bob@example.com")[-1]
    assert cancellation.subject == "Cancelled: Picnic"
    assert "Rain, sorry!" in cancellation.text_content
    assert mail_client.to("ann@example.com")[-1].subject == "[convo] Verify Email"
    assert api.get(url, headers=_auth(ann)).status_code == 404


def test_roll_magic_link(api):
    ann, bob = _signup(api, "Ann"), _signup(api, "Bob")
    event = _create_event(api, ann, [bob["id"]])

    assert api.post(f"/events/{event['id']}/magic", headers=_auth(bob)).status_code == 403

    first = api.post(f"/events/{event['id']}/magic", headers=_auth(ann)).json()["magicLink"]
    second = api.post(f"/events/{event['id']}/magic", headers=_auth(ann)).json()["magicLink"]
    assert first.startswith(f"https://app.test/invite/{event['id']}/")
    assert first != second
