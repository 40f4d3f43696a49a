from unittest.mock import patch

import redis


def register(client, username, password="secret123"):
    response = client.post("/auth/register", json={"username": username, "password": password})
    assert response.status_code == 201
    return response.json()


class TestCreateRoom:

    def test_requires_token(self, client):
        response = client.post("/rooms/create", json={"name": "Algorithms"})

        assert response.status_code == 401
        assert response.json() == {"error": "No token provided"}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_rejects_bad_token(self, client):
        response = client.post(
            "/rooms/create",
            json={"name": "Algorithms"},
            headers={"Authorization": "Bearer nope"},
        )

        assert response.status_code == 401

    def test_requires_name(self, client, auth_headers):
        for body in ({}, {"name": ""}, {"name": "   "}):
            response = client.post("/rooms/create", json=body, headers=auth_headers)
            assert response.status_code == 400
            assert response.json() == {"error": "Room name is required"}

    def test_rejects_missing_body(self, client, auth_headers):
        response = client.post("/rooms/create", headers=auth_headers)

        assert response.status_code == 400
        assert "error" in response.json()

    def test_creates_room_owned_by_caller(self, client, make_token):
        headers = {"Authorization": f"Bearer {make_token(user_id='u-1')}"}

        response = client.post("/rooms/create", json={"name": "Physics"}, headers=headers)

        assert response.status_code == 201
        room = response.json()
        assert room["name"] == "Physics"
        assert room["createdBy"] == "u-1"
        assert room["members"] == ["u-1"]
        assert room["id"]
        assert room["createdAt"]

    def test_storage_failure_is_internal_error(self, client, backend, auth_headers):
        with patch.object(backend, "create_room", side_effect=redis.ConnectionError("down")):
            response = client.post("/rooms/create", json={"name": "Physics"}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}


class TestListRooms:

    def test_empty(self, client):
        response = client.get("/rooms")

        assert response.status_code == 200
        assert response.json() == []

    def test_created_room_is_listed_with_resolved_users(self, client):
        user = register(client, "userX")
        headers = {"Authorization": f"Bearer {user['token']}"}
        client.post("/rooms/create", json={"name": "Algorithms"}, headers=headers)

        rooms = client.get("/rooms").json()

        assert len(rooms) == 1
        assert rooms[0]["name"] == "Algorithms"
        assert rooms[0]["createdBy"] == {"id": user["user"]["id"], "username": "userX"}
        assert rooms[0]["members"] == [{"id": user["user"]["id"], "username": "userX"}]

    def test_lists_rooms_of_all_users(self, client):
        alice = register(client, "alice")
        bob = register(client, "bob")
        for owner, name in ((alice, "Chemistry"), (bob, "History")):
            client.post(
                "/rooms/create",
                json={"name": name},
                headers={"Authorization": f"Bearer {owner['token']}"},
            )

        rooms = client.get("/rooms").json()

        owners = {room["name"]: room["createdBy"]["username"] for room in rooms}
        assert owners == {"Chemistry": "alice", "History": "bob"}

    def test_storage_failure_is_internal_error(self, client, backend):
        with patch.object(backend, "list_rooms", side_effect=redis.TimeoutError("slow")):
            response = client.get("/rooms")

        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}
