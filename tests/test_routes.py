from __future__ import annotations

import pytest


@pytest.fixture
def client(app):
    return app.test_client()


def _create(client, headers, name="Sprint 1"):
    return client.post("/api/rooms", json={"name": name}, headers=headers)


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"
    assert "timestamp" in resp.get_json()


def test_rooms_require_authentication(client):
    resp = client.get("/api/rooms")
    assert resp.status_code == 401
    assert resp.get_json() == {"message": "Authentication required", "code": "AUTH_REQUIRED"}


def test_create_list_get_delete(client, auth_headers, services):
    headers = auth_headers("alice")

    resp = _create(client, headers)
    assert resp.status_code == 201
    summary = resp.get_json()["room"]
    assert summary["name"] == "Sprint 1"
    assert summary["participantCount"] == 0

    resp = client.get("/api/rooms", headers=headers)
    assert [r["id"] for r in resp.get_json()["rooms"]] == [summary["id"]]

    resp = client.get(f"/api/rooms/{summary['id']}", headers=headers)
    state = resp.get_json()["room"]
    assert state["adminId"] == "alice"
    assert state["isVotingOpen"] is True
    assert state["participants"][0]["role"] == "admin"

    resp = client.delete(f"/api/rooms/{summary['id']}", headers=headers)
    assert resp.status_code == 200
    assert services.store.get(summary["id"]) is None
    assert client.get("/api/rooms", headers=headers).get_json()["rooms"] == []


def test_create_rejects_blank_name(client, auth_headers):
    resp = _create(client, auth_headers("alice"), name="   ")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "INVALID_INPUT"


def test_room_cap_per_user(client, auth_headers, services):
    headers = auth_headers("alice")
    for n in range(3):
        assert _create(client, headers, name=f"Sprint {n}").status_code == 201

    resp = _create(client, headers, name="One too many")

    assert resp.status_code == 400
    assert resp.get_json()["code"] == "MAX_ROOMS_EXCEEDED"
    assert len(services.store.user_room_ids("alice")) == 3
    # other users have their own allowance
    assert _create(client, auth_headers("bob")).status_code == 201


def test_deleting_a_room_frees_a_slot(client, auth_headers):
    headers = auth_headers("alice")
    ids = [_create(client, headers, name=f"Sprint {n}").get_json()["room"]["id"] for n in range(3)]

    client.delete(f"/api/rooms/{ids[0]}", headers=headers)

    assert _create(client, headers).status_code == 201


def test_only_admin_can_delete(client, auth_headers, services):
    room_id = _create(client, auth_headers("alice")).get_json()["room"]["id"]

    resp = client.delete(f"/api/rooms/{room_id}", headers=auth_headers("bob"))

    assert resp.status_code == 403
    assert resp.get_json()["code"] == "FORBIDDEN"
    assert services.store.get(room_id) is not None


def test_unknown_room(client, auth_headers):
    headers = auth_headers("alice")
    assert client.get("/api/rooms/nope", headers=headers).status_code == 404
    assert client.delete("/api/rooms/nope", headers=headers).status_code == 404


def test_dev_login_sets_cookie(client):
    resp = client.post("/api/auth/dev-login", json={"name": "Alice", "userId": "alice"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["user"] == {"id": "alice", "name": "Alice", "avatarUrl": None}
    assert body["token"]
    assert client.get_cookie("token").value == body["token"]

    # the cookie alone authenticates later requests
    resp = client.get("/api/auth/me")
    assert resp.get_json()["user"]["id"] == "alice"

    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").status_code == 401


@pytest.mark.parametrize("name", ["", "x" * 51, "<script>"])
def test_dev_login_validates_name(client, name):
    resp = client.post("/api/auth/dev-login", json={"name": name})
    assert resp.status_code == 400


def test_dev_login_disabled(app, client):
    app.config["ALLOW_DEV_LOGIN"] = False
    resp = client.post("/api/auth/dev-login", json={"name": "Alice"})
    assert resp.status_code == 404


def test_only_the_api_is_served(client):
    assert client.get("/").status_code == 404
    assert client.get("/rooms/abc").status_code == 404
