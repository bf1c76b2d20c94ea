from bson import ObjectId

from conftest import ALICE, BOB, CAROL


def _open(client, auth_headers, requester=ALICE, provider=BOB):
    resp = client.post("/conversations", json={"provider_id": provider["_id"]}, headers=auth_headers(requester))
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_requires_bearer_token(client):
    assert client.get("/conversations").status_code == 401
    resp = client.get("/conversations", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_expired_token_is_rejected(client, token_for):
    token = token_for(ALICE, expires_in=-60)
    resp = client.get("/conversations", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_open_conversation_is_idempotent(client, auth_headers):
    first = _open(client, auth_headers)
    again = _open(client, auth_headers)
    reverse = _open(client, auth_headers, requester=BOB, provider=ALICE)

    assert first["id"] == again["id"] == reverse["id"]
    listed = client.get("/conversations", headers=auth_headers(ALICE)).json()
    assert [c["id"] for c in listed["items"]] == [first["id"]]
    assert listed["next_cursor"] is None


def test_conversation_with_self_is_a_validation_error(client, auth_headers):
    resp = client.post("/conversations", json={"provider_id": ALICE["_id"]}, headers=auth_headers(ALICE))
    assert resp.status_code == 422
    assert resp.json()["code"] == "validation"


def test_send_and_list_messages(client, auth_headers):
    convo = _open(client, auth_headers)
    url = f"/conversations/{convo['id']}/messages"

    first = client.post(url, json={"content": "Hi, can you paint my hallway?"}, headers=auth_headers(ALICE))
    second = client.post(url, json={"content": "Sure, send me photos"}, headers=auth_headers(BOB))
    assert first.status_code == 201
    assert second.status_code == 201

    history = client.get(url, headers=auth_headers(ALICE)).json()
    assert [m["id"] for m in history["items"]] == [first.json()["id"], second.json()["id"]]
    assert history["items"][0]["sender_id"] == ALICE["_id"]

    convo_view = client.get(f"/conversations/{convo['id']}", headers=auth_headers(BOB)).json()
    assert convo_view["last_message_preview"] == "Sure, send me photos"
    assert convo_view["counterpart_id"] == ALICE["_id"]


def test_empty_message_is_rejected(client, auth_headers):
    convo = _open(client, auth_headers)
    resp = client.post(f"/conversations/{convo['id']}/messages", json={"content": "  "}, headers=auth_headers(ALICE))

    assert resp.status_code == 422
    assert resp.json()["code"] == "validation"
    assert client.get(f"/conversations/{convo['id']}/messages", headers=auth_headers(ALICE)).json()["items"] == []


def test_outsider_gets_forbidden(client, auth_headers):
    convo = _open(client, auth_headers)

    resp = client.post(f"/conversations/{convo['id']}/messages", json={"content": "hey"}, headers=auth_headers(CAROL))
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"
    assert client.get(f"/conversations/{convo['id']}/unread", headers=auth_headers(CAROL)).status_code == 403


def test_unknown_conversation_is_not_found(client, auth_headers):
    for convo_id in (str(ObjectId()), "garbage"):
        resp = client.get(f"/conversations/{convo_id}/messages", headers=auth_headers(ALICE))
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"


def test_read_and_unread_counts(client, auth_headers):
    convo = _open(client, auth_headers)
    url = f"/conversations/{convo['id']}"
    client.post(f"{url}/messages", json={"content": "one"}, headers=auth_headers(ALICE))
    client.post(f"{url}/messages", json={"content": "two"}, headers=auth_headers(ALICE))

    assert client.get(f"{url}/unread", headers=auth_headers(BOB)).json() == {"unread": 2}
    assert client.get(f"{url}/unread", headers=auth_headers(ALICE)).json() == {"unread": 0}
    listed = client.get("/conversations", headers=auth_headers(BOB)).json()
    assert listed["items"][0]["unread_count"] == 2

    assert client.post(f"{url}/read", headers=auth_headers(BOB)).json() == {"updated": 2}
    assert client.post(f"{url}/read", headers=auth_headers(BOB)).json() == {"updated": 0}
    assert client.get(f"{url}/unread", headers=auth_headers(BOB)).json() == {"unread": 0}


def test_messages_grouped_by_day(client, auth_headers):
    convo = _open(client, auth_headers)
    url = f"/conversations/{convo['id']}/messages"
    client.post(url, json={"content": "one"}, headers=auth_headers(ALICE))
    client.post(url, json={"content": "two"}, headers=auth_headers(BOB))

    resp = client.get(f"{url}/by-day", params={"tz": "Europe/Paris"}, headers=auth_headers(ALICE))
    assert resp.status_code == 200
    days = resp.json()["days"]
    assert sum(len(d["messages"]) for d in days) == 2
    assert [m["content"] for d in days for m in d["messages"]] == ["one", "two"]

    bad = client.get(f"{url}/by-day", params={"tz": "Nowhere/Land"}, headers=auth_headers(ALICE))
    assert bad.status_code == 422


def test_typing_endpoints(client, auth_headers):
    convo = _open(client, auth_headers)
    url = f"/conversations/{convo['id']}/typing"

    assert client.put(url, headers=auth_headers(ALICE)).status_code == 204
    seen_by_bob = client.get(url, headers=auth_headers(BOB)).json()["items"]
    assert [row["user_id"] for row in seen_by_bob] == [ALICE["_id"]]
    assert client.get(url, headers=auth_headers(ALICE)).json()["items"] == []

    assert client.delete(url, headers=auth_headers(ALICE)).status_code == 204
    assert client.get(url, headers=auth_headers(BOB)).json()["items"] == []
    assert client.put(url, headers=auth_headers(CAROL)).status_code == 403


def test_sending_clears_sender_typing(client, auth_headers):
    convo = _open(client, auth_headers)
    url = f"/conversations/{convo['id']}"
    client.put(f"{url}/typing", headers=auth_headers(ALICE))

    client.post(f"{url}/messages", json={"content": "done typing"}, headers=auth_headers(ALICE))

    assert client.get(f"{url}/typing", headers=auth_headers(BOB)).json()["items"] == []


def test_typing_under_uppercase_id_is_seen_on_canonical_id(client, auth_headers):
    convo = _open(client, auth_headers)
    shouted = f"/conversations/{convo['id'].upper()}"
    url = f"/conversations/{convo['id']}"

    assert client.put(f"{shouted}/typing", headers=auth_headers(ALICE)).status_code == 204
    seen_by_bob = client.get(f"{url}/typing", headers=auth_headers(BOB)).json()["items"]
    assert [row["user_id"] for row in seen_by_bob] == [ALICE["_id"]]

    client.post(f"{url}/messages", json={"content": "done"}, headers=auth_headers(ALICE))
    assert client.get(f"{shouted}/typing", headers=auth_headers(BOB)).json()["items"] == []
