"""End-to-end tests through the HTTP API."""
import pytest

pytestmark = pytest.mark.anyio


async def _register(client, name, email):
    response = await client.post(
        "/api/auth/register", json={"name": name, "email": email, "password": "secret1"}
    )
    assert response.status_code == 201, response.text
    body = response.json()
    return body["user"], {"Authorization": f"Bearer {body['token']}"}


class TestAuth:
    async def test_register_login_and_me(self, client):
        user, headers = await _register(client, "Ada", "ada@example.com")
        assert user["avatar"].startswith("https://ui-avatars.com/")

        response = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "secret1"})
        assert response.status_code == 200
        assert response.json()["user"]["is_online"] is True

        me = await client.get("/api/me", headers=headers)
        assert me.json()["id"] == user["id"]

    async def test_duplicate_and_bad_credentials(self, client):
        await _register(client, "Ada", "ada@example.com")

        again = await client.post(
            "/api/auth/register", json={"name": "Ada", "email": "ada@example.com", "password": "secret1"}
        )
        assert again.status_code == 409
        assert again.json()["code"] == "conflict"

        wrong = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "nope-nope"})
        assert wrong.status_code == 401
        assert wrong.headers["WWW-Authenticate"] == "Bearer"

    async def test_protected_routes_need_a_valid_token(self, client):
        missing = await client.get("/api/chats")
        assert missing.status_code == 401
        assert missing.json()["code"] == "not_authenticated"

        garbage = await client.get("/api/chats", headers={"Authorization": "Bearer not-a-jwt"})
        assert garbage.status_code == 401


class TestRoomLifecycle:
    async def test_group_invite_message_leave(self, client, router):
        ada, ada_headers = await _register(client, "Ada", "ada@example.com")
        bob, bob_headers = await _register(client, "Bob", "bob@example.com")
        bob_socket = await router.register_connection(bob["id"], "Bob")

        created = await client.post("/api/chats/group", json={"name": "Team"}, headers=ada_headers)
        assert created.status_code == 201
        room = created.json()
        assert room["group_admin_id"] == ada["id"]
        assert room["join_code"]
        assert 0 < room["time_remaining_seconds"] <= 5 * 3600

        redeemed = await client.post(
            "/api/invite-codes/redeem", json={"code": room["join_code"].lower()}, headers=bob_headers
        )
        assert redeemed.status_code == 200
        assert redeemed.json()["joined"] is True
        assert redeemed.json()["message"] == "Successfully joined Team"
        assert [u["id"] for u in redeemed.json()["chat"]["users"]] == [ada["id"], bob["id"]]

        back = await client.post(
            "/api/invite-codes/redeem", json={"code": room["join_code"]}, headers=bob_headers
        )
        assert back.json()["joined"] is False
        assert back.json()["message"] == "Welcome back to Team"

        sent = await client.post(
            "/api/messages",
            json={"chat_id": room["id"], "message": {"kind": "text", "content": "hello bob"}},
            headers=ada_headers,
        )
        assert sent.status_code == 201
        assert sent.json()["sender"]["name"] == "Ada"

        delivered = [e for e in bob_socket.pending() if e["type"] == "message received"]
        assert [e["message"]["content"] for e in delivered][-1] == "hello bob"

        history = await client.get(f"/api/messages/{room['id']}", headers=bob_headers)
        contents = [m["content"] for m in history.json()]
        assert contents == ["Bob joined the chat via invite code", "hello bob"]

        marked = await client.put(f"/api/messages/{room['id']}/read", headers=bob_headers)
        assert marked.json() == {"marked": 1}

        download = await client.get(f"/api/messages/{room['id']}/download", headers=bob_headers)
        assert download.headers["content-disposition"] == 'attachment; filename="Team_history.json"'
        assert download.json()["message_count"] == 2

        left = await client.post(f"/api/chats/{room['id']}/leave", headers=ada_headers)
        assert left.json() == {"message": "You left the chat", "room_deleted": False}

        room_now = await client.get(f"/api/chats/{room['id']}", headers=bob_headers)
        assert room_now.json()["group_admin_id"] == bob["id"]

        gone = await client.post(f"/api/chats/{room['id']}/leave", headers=bob_headers)
        assert gone.json()["room_deleted"] is True
        assert (await client.get(f"/api/chats/{room['id']}", headers=bob_headers)).status_code == 404

    async def test_removed_and_departed_members_stop_hearing_the_room(self, client, router):
        ada, ada_headers = await _register(client, "Ada", "ada@example.com")
        bob, _ = await _register(client, "Bob", "bob@example.com")
        cy, cy_headers = await _register(client, "Cy", "cy@example.com")
        room = (await client.post("/api/chats/group", json={"name": "Team"}, headers=ada_headers)).json()
        for user in (bob, cy):
            added = await client.put(f"/api/chats/{room['id']}/add", json={"user_id": user["id"]}, headers=ada_headers)
            assert added.status_code == 200

        ada_socket = await router.register_connection(ada["id"], "Ada")
        bob_socket = await router.register_connection(bob["id"], "Bob")
        cy_socket = await router.register_connection(cy["id"], "Cy")
        for socket in (ada_socket, bob_socket, cy_socket):
            await router.join_room(socket, room["id"])

        removed = await client.put(f"/api/chats/{room['id']}/remove", json={"user_id": bob["id"]}, headers=ada_headers)
        assert removed.status_code == 200
        left = await client.post(f"/api/chats/{room['id']}/leave", headers=cy_headers)
        assert left.json()["room_deleted"] is False
        assert router.room_subscribers(room["id"]) == {ada["id"]}
        assert bob_socket.rooms == set() and cy_socket.rooms == set()
        bob_socket.pending()
        cy_socket.pending()

        await client.post(
            "/api/messages",
            json={"chat_id": room["id"], "message": {"kind": "text", "content": "members only"}},
            headers=ada_headers,
        )
        await router.publish_typing(room["id"], ada["id"], "Ada", True)
        assert bob_socket.pending() == []
        assert cy_socket.pending() == []

        gone = await client.post(f"/api/chats/{room['id']}/leave", headers=ada_headers)
        assert gone.json()["room_deleted"] is True
        assert router.room_subscribers(room["id"]) == set()
        assert ada_socket.rooms == set()

    async def test_error_codes(self, client):
        _, ada_headers = await _register(client, "Ada", "ada@example.com")
        bob, bob_headers = await _register(client, "Bob", "bob@example.com")
        room = (await client.post("/api/chats/group", json={"name": "Team"}, headers=ada_headers)).json()

        forbidden = await client.get(f"/api/messages/{room['id']}", headers=bob_headers)
        assert (forbidden.status_code, forbidden.json()["code"]) == (403, "forbidden")

        unknown = await client.post("/api/invite-codes/redeem", json={"code": "ZZZZZZ"}, headers=bob_headers)
        assert (unknown.status_code, unknown.json()["code"]) == (404, "not_found")

        rename = await client.put(f"/api/chats/{room['id']}", json={"chat_name": "Mine"}, headers=bob_headers)
        assert rename.status_code == 403

        added = await client.put(f"/api/chats/{room['id']}/add", json={"user_id": bob["id"]}, headers=ada_headers)
        assert added.status_code == 200
        twice = await client.put(f"/api/chats/{room['id']}/add", json={"user_id": bob["id"]}, headers=ada_headers)
        assert (twice.status_code, twice.json()["code"]) == (409, "already_member")

        blank = await client.post(
            "/api/messages",
            json={"chat_id": room["id"], "message": {"kind": "text", "content": "  "}},
            headers=bob_headers,
        )
        assert (blank.status_code, blank.json()["code"]) == (400, "validation_error")

    async def test_admin_regenerates_and_lists_codes(self, client):
        _, ada_headers = await _register(client, "Ada", "ada@example.com")
        room = (await client.post("/api/chats/group", json={"name": "Team"}, headers=ada_headers)).json()

        fresh = await client.post(f"/api/chats/{room['id']}/invite-code", headers=ada_headers)
        assert fresh.status_code == 201
        assert fresh.json()["code"] != room["join_code"]

        listed = await client.get("/api/invite-codes", params={"room": room["id"]}, headers=ada_headers)
        assert [c["code"] for c in listed.json()] == [fresh.json()["code"]]

        deleted = await client.delete(f"/api/invite-codes/{fresh.json()['id']}", headers=ada_headers)
        assert deleted.status_code == 200
        listed = await client.get("/api/invite-codes", params={"room": room["id"]}, headers=ada_headers)
        assert listed.json() == []


class TestDirectAndUploads:
    async def test_direct_chat_is_reused(self, client):
        ada, ada_headers = await _register(client, "Ada", "ada@example.com")
        bob, bob_headers = await _register(client, "Bob", "bob@example.com")

        first = await client.post("/api/chats", json={"user_id": bob["id"]}, headers=ada_headers)
        again = await client.post("/api/chats", json={"user_id": ada["id"]}, headers=bob_headers)
        assert first.json()["id"] == again.json()["id"]
        assert first.json()["is_group_chat"] is False

        listed = await client.get("/api/chats", headers=bob_headers)
        assert [c["id"] for c in listed.json()] == [first.json()["id"]]

    async def test_file_upload_becomes_an_attachment(self, client):
        _, headers = await _register(client, "Ada", "ada@example.com")
        room = (await client.post("/api/chats/group", json={"name": "Team"}, headers=headers)).json()

        response = await client.post(
            "/api/messages/file",
            data={"chat_id": room["id"]},
            files={"file": ("cat.png", b"\x89PNG fake image", "image/png")},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        message = response.json()
        assert message["message_type"] == "image"
        assert message["content"] == "📎 cat.png"
        assert message["attachment"]["url"].startswith("/uploads/")
        assert message["attachment"]["size"] == len(b"\x89PNG fake image")

    async def test_disallowed_upload_type(self, client):
        _, headers = await _register(client, "Ada", "ada@example.com")
        room = (await client.post("/api/chats/group", json={"name": "Team"}, headers=headers)).json()

        response = await client.post(
            "/api/messages/file",
            data={"chat_id": room["id"]},
            files={"file": ("run.exe", b"MZ", "application/x-msdownload")},
            headers=headers,
        )
        assert response.status_code == 400

    async def test_user_search(self, client):
        _, ada_headers = await _register(client, "Ada", "ada@example.com")
        bob, _ = await _register(client, "Bob Builder", "bob@example.com")

        found = await client.get("/api/users", params={"search": "builder"}, headers=ada_headers)
        assert [u["id"] for u in found.json()] == [bob["id"]]
