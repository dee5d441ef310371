"""
End-to-end flows through the HTTP API and the maintenance CLI against an
in-memory SQLite database, the in-process cache store and a fixed clock.
"""

import json
from unittest.mock import MagicMock

import pytest

from app import cli
from conftest import headers, make_user


@pytest.fixture
def users(session_factory):
    """Users committed up front; the API opens its own sessions"""
    session = session_factory()
    try:
        created = {name: make_user(session, name) for name in ("alice", "bob", "carol")}
        created["root"] = make_user(session, "root", role="admin")
        return {name: user.id for name, user in created.items()}
    finally:
        session.close()


@pytest.fixture
def room_id(api_client, users):
    response = api_client.post("/rooms", json={"name": "general"}, headers=headers(users["alice"]))
    assert response.status_code == 201
    return response.json()["room"]["id"]


class TestRoomFlow:
    """Rooms, presence and messages over HTTP"""

    def test_create_list_and_join(self, api_client, users, room_id):
        listed = api_client.get("/rooms").json()
        assert listed["total"] == 1
        assert listed["rooms"][0]["online_users"] == 1

        joined = api_client.post(f"/rooms/{room_id}/join", headers=headers(users["bob"]))
        assert joined.status_code == 200
        assert joined.json()["rejoined"] is False

        online = api_client.get(f"/rooms/{room_id}/online").json()
        assert [user["username"] for user in online["online_users"]] == ["alice", "bob"]

    def test_send_and_read_messages(self, api_client, users, room_id):
        api_client.post(f"/rooms/{room_id}/join", headers=headers(users["bob"]))

        sent = api_client.post(
            f"/rooms/{room_id}/messages", json={"message": "good morning"}, headers=headers(users["bob"])
        )
        assert sent.status_code == 201
        assert sent.json()["message"]["username"] == "bob"

        history = api_client.get(f"/rooms/{room_id}/messages").json()
        assert history["messages"][-1]["message"] == "good morning"
        assert history["pagination"]["count"] == 3

        found = api_client.get(f"/rooms/{room_id}/messages/search", params={"q": "morning"}).json()
        assert [m["message"] for m in found["messages"]] == ["good morning"]

    def test_missing_user_header(self, api_client, room_id):
        response = api_client.post(f"/rooms/{room_id}/messages", json={"message": "good morning"})

        assert response.status_code == 403
        assert response.json()["error"] == "authentication_required"

    def test_non_member_cannot_send(self, api_client, users, room_id):
        response = api_client.post(
            f"/rooms/{room_id}/messages", json={"message": "good morning"}, headers=headers(users["carol"])
        )

        assert response.status_code == 403
        assert response.json()["error"] == "not_a_member"

    def test_blocked_message(self, api_client, users, room_id):
        api_client.post(f"/rooms/{room_id}/join", headers=headers(users["bob"]))

        response = api_client.post(
            f"/rooms/{room_id}/messages", json={"message": "I hate it"}, headers=headers(users["bob"])
        )

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "message_blocked"
        assert body["details"]["severity"] == "high"

    def test_missing_body_field(self, api_client, users, room_id):
        response = api_client.post(f"/rooms/{room_id}/messages", json={}, headers=headers(users["alice"]))

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_unknown_room(self, api_client):
        response = api_client.get("/rooms/999")

        assert response.status_code == 404
        assert response.json()["error"] == "room_not_found"

    def test_duplicate_room_name(self, api_client, users, room_id):
        response = api_client.post("/rooms", json={"name": "general"}, headers=headers(users["bob"]))

        assert response.status_code == 409
        assert response.json()["error"] == "room_name_taken"


class TestModerationFlow:
    """Mute, report and review over HTTP"""

    def test_muted_member_is_rejected(self, api_client, users, room_id):
        api_client.post(f"/rooms/{room_id}/join", headers=headers(users["bob"]))

        muted = api_client.post(
            f"/rooms/{room_id}/moderation/users/{users['bob']}/mute",
            json={"duration_minutes": 10, "reason": "cool down"},
            headers=headers(users["alice"]),
        )
        assert muted.status_code == 200

        response = api_client.post(
            f"/rooms/{room_id}/messages", json={"message": "good morning"}, headers=headers(users["bob"])
        )
        assert response.status_code == 403
        assert response.json()["error"] == "user_muted"
        assert response.json()["details"]["muted_until"] == "2024-05-01T12:10:00"

        status = api_client.get(
            f"/rooms/{room_id}/moderation/users/{users['bob']}/status", headers=headers(users["bob"])
        ).json()
        assert status["can_send_messages"] is False

    def test_member_cannot_moderate(self, api_client, users, room_id):
        api_client.post(f"/rooms/{room_id}/join", headers=headers(users["bob"]))

        response = api_client.post(
            f"/rooms/{room_id}/moderation/users/{users['alice']}/ban",
            json={},
            headers=headers(users["bob"]),
        )

        assert response.status_code == 403

    def test_report_and_review(self, api_client, users, room_id):
        api_client.post(f"/rooms/{room_id}/join", headers=headers(users["bob"]))
        message_id = api_client.post(
            f"/rooms/{room_id}/messages", json={"message": "buy my stuff"}, headers=headers(users["bob"])
        ).json()["message"]["id"]

        reported = api_client.post(
            f"/rooms/{room_id}/messages/{message_id}/reports",
            json={"report_type": "spam"},
            headers=headers(users["carol"]),
        )
        assert reported.status_code == 201
        report_id = reported.json()["report_id"]

        invalid = api_client.post(
            f"/rooms/{room_id}/messages/{message_id}/reports", json={}, headers=headers(users["carol"])
        )
        assert invalid.status_code == 422

        listed = api_client.get("/reports", params={"room_id": room_id}, headers=headers(users["alice"])).json()
        assert listed["pagination"]["total"] == 1
        assert api_client.get("/reports", headers=headers(users["alice"])).status_code == 403
        assert api_client.get("/reports", headers=headers(users["root"])).status_code == 200

        reviewed = api_client.post(
            f"/reports/{report_id}/review",
            json={"action": "resolve", "delete_message": True},
            headers=headers(users["alice"]),
        )
        assert reviewed.status_code == 200
        assert reviewed.json()["actions_performed"] == ["message_deleted"]

        again = api_client.post(
            f"/reports/{report_id}/review", json={"action": "dismiss"}, headers=headers(users["alice"])
        )
        assert again.status_code == 409

        mine = api_client.get("/reports/mine", headers=headers(users["carol"])).json()
        assert mine["reports"][0]["status"] == "resolved"


class TestServiceEndpoints:
    """Root, health and request tracing"""

    def test_root(self, api_client):
        body = api_client.get("/").json()

        assert body["status"] == "running"

    def test_liveness(self, api_client):
        response = api_client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_request_id_is_echoed(self, api_client):
        response = api_client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, api_client):
        assert api_client.get("/").headers["X-Request-ID"]


class TestMaintenanceCli:
    """Maintenance commands"""

    @pytest.fixture(autouse=True)
    def keep_test_logging(self, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", lambda: None)

    def run(self, capsys, argv, services, session_factory):
        code = cli.main(["--backend", "memory"] + argv, services=services, session_factory=session_factory)
        return code, json.loads(capsys.readouterr().out)

    def test_sweep_presence(self, capsys, services, session_factory, clock, room, bob, joined):
        clock.advance(minutes=6)

        code, output = self.run(capsys, ["sweep-presence"], services, session_factory)

        assert code == 0
        assert output["swept"] == 2

    def test_cleanup_and_list_moderations(self, capsys, db, services, session_factory, clock,
                                          room, alice, bob, joined):
        services.moderation.mute_user(db, room["id"], alice.id, bob.id, 10)

        code, listed = self.run(capsys, ["list-moderations", "--room", str(room["id"])], services, session_factory)
        assert code == 0
        assert [entry["user_id"] for entry in listed] == [bob.id]

        clock.advance(minutes=11)
        code, cleaned = self.run(capsys, ["cleanup-moderations"], services, session_factory)
        assert cleaned == {"unmuted": 1, "unbanned": 0}

    def test_warm_and_clear_cache(self, capsys, services, session_factory, room):
        code, warmed = self.run(capsys, ["warm-cache"], services, session_factory)
        assert warmed == {"rooms_warmed": 1}

        code, cleared = self.run(capsys, ["clear-cache"], services, session_factory)
        assert code == 0
        assert cleared["deleted_keys"] >= 3

    def test_failure_exit_code(self, capsys, session_factory):
        services = MagicMock()
        services.maintenance.sweep_presence.side_effect = RuntimeError("store down")

        code = cli.main(["--backend", "memory", "sweep-presence"], services=services, session_factory=session_factory)

        assert code == 1
        assert "store down" in capsys.readouterr().err
