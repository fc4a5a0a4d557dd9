import json


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


def _queued(fake_redis, action: str) -> list[dict]:
    payloads = [json.loads(item) for item in fake_redis.lists.get("test-emails", [])]
    return [p for p in payloads if p["action"] == action]


def test_thread_conversation(api, clients, fake_redis):
    ann, bob, cat = _signup(api, "Ann"), _signup(api, "Bob"), _signup(api, "Cat")

    created = api.post(
        "/threads",
        headers=_auth(ann),
        json={"subject": "", "users": [bob["id"], "dan@example.com"], "body": "Brunch on Sunday?"},
    )
    assert created.status_code == 201
    thread = created.json()
    assert thread["subject"] == "Ann with Bob and dan"
    assert thread["owner"]["id"] == ann["id"]
    assert [u["fullName"] for u in thread["users"]] == ["Bob", "dan"]
    assert thread["preview"]["body"] == "Brunch on Sunday?"
    assert [u["id"] for u in thread["userReads"]] == [ann["id"]]
    assert _queued(fake_redis, "SendThread")[0]["ids"] == [thread["id"]]

    notification = clients.notifications.notifications[0]
    assert notification.verb == "NewMessage"
    assert ann["id"] not in [k.encode() for k in notification.user_keys]

    listed = api.get("/threads", headers=_auth(bob)).json()["threads"]
    assert [t["id"] for t in listed] == [thread["id"]]

    # Non-participants cannot tell the thread exists
    assert api.get(f"/threads/{thread['id']}", headers=_auth(cat)).status_code == 404
    assert api.get(f"/threads/{thread['id']}/messages", headers=_auth(cat)).status_code == 404
    assert api.get("/threads/not-an-id", headers=_auth(ann)).status_code == 404

    reply = api.post(f"/threads/{thread['id']}/messages", headers=_auth(bob), json={"body": "Yes!"})
    assert reply.status_code == 201
    assert reply.json()["user"]["id"] == bob["id"]
    assert reply.json()["parentId"] == thread["id"]

    messages = api.get(f"/threads/{thread['id']}/messages", headers=_auth(ann)).json()["messages"]
    assert [m["body"] for m in messages] == ["Yes!", "Brunch on Sunday?"]

    read = api.post(f"/threads/{thread['id']}/reads", headers=_auth(ann)).json()
    assert sorted(u["id"] for u in read["userReads"]) == sorted([ann["id"], bob["id"]])

    fetched = api.get(f"/threads/{thread['id']}", headers=_auth(bob)).json()
    assert fetched["responseCount"] == 2
    assert fetched["preview"]["sender"]["id"] == bob["id"]


def test_thread_membership(api):
    ann, bob, cat = _signup(api, "Ann"), _signup(api, "Bob"), _signup(api, "Cat")
    thread = api.post(
        "/threads", headers=_auth(ann), json={"subject": "Plans", "users": [bob["id"]], "body": "hi"}
    ).json()
    url = f"/threads/{thread['id']}"

    assert api.post(f"{url}/users/{cat['id']}", headers=_auth(bob)).status_code == 403

    added = api.post(f"{url}/users/{cat['id']}", headers=_auth(ann))
    assert added.status_code == 200
    assert sorted(u["id"] for u in added.json()["users"]) == sorted([bob["id"], cat["id"]])
    assert api.get(url, headers=_auth(cat)).status_code == 200

    assert api.delete(f"{url}/users/{bob['id']}", headers=_auth(cat)).status_code == 403
    left = api.delete(f"{url}/users/{cat['id']}", headers=_auth(cat))
    assert left.status_code == 200
    assert api.get(url, headers=_auth(cat)).status_code == 404

    assert api.delete(f"{url}/users/{ann['id']}", headers=_auth(ann)).status_code == 400


def test_delete_thread(api):
    ann, bob = _signup(api, "Ann"), _signup(api, "Bob")
    thread = api.post(
        "/threads", headers=_auth(ann), json={"subject": "Plans", "users": [bob["id"]], "body": "hi"}
    ).json()

    assert api.delete(f"/threads/{thread['id']}", headers=_auth(bob)).status_code == 403
    assert api.delete(f"/threads/{thread['id']}", headers=_auth(ann)).status_code == 200
    assert api.get("/threads", headers=_auth(bob)).json()["threads"] == []
    assert api.get(f"/threads/{thread['id']}", headers=_auth(ann)).status_code == 404


def test_thread_pagination_and_validation(api):
    ann = _signup(api, "Ann")
    for subject in ("one", "two", "three"):
        api.post("/threads", headers=_auth(ann), json={"subject": subject, "body": "hi"})

    page = api.get("/threads", headers=_auth(ann), params={"page": 1, "size": 2}).json()["threads"]
    assert [t["subject"] for t in page] == ["one"]

    missing_body = api.post("/threads", headers=_auth(ann), json={"subject": "x"})
    assert missing_body.status_code == 400
    assert "body" in missing_body.json()
