"""HTTP and WebSocket API tests."""

import uuid

import pytest
from starlette.websockets import WebSocketDisconnect

from vigil.core.security import create_access_token

LOCATION = {"general": "Downtown, near 5th Ave", "precise": "123 Main St, Apt 4B"}


def _auth(profile) -> dict:
    return {"Authorization": f"Bearer {create_access_token(profile.id)}"}


def _anon(anonymous_id: str) -> dict:
    return {"X-Anonymous-Id": anonymous_id}


def _raise_alert(client, headers=None) -> dict:
    r = client.post("/alerts", json={"location": LOCATION}, headers=headers or _anon("anon-origin"))
    assert r.status_code == 201
    return r.json()


# ---------- auth ----------


def test_register_login_me_and_heartbeat(client):
    r = client.post(
        "/auth/register",
        json={"email": "sam@example.com", "password": "longenough", "is_responder": True},
    )
    assert r.status_code == 200
    assert r.json()["is_responder"] is True
    assert r.json()["is_admin"] is False

    r = client.post("/auth/register", json={"email": "sam@example.com", "password": "longenough"})
    assert r.status_code == 400

    r = client.post("/auth/login", json={"email": "sam@example.com", "password": "wrong-password"})
    assert r.status_code == 401

    r = client.post("/auth/login", json={"email": "sam@example.com", "password": "longenough"})
    assert r.status_code == 200
    headers = {"Authorization": f"Bearer {r.json()['access_token']}"}

    r = client.get("/auth/me", headers=headers)
    assert r.status_code == 200
    assert r.json()["email"] == "sam@example.com"
    assert r.json()["last_seen_at"] is None

    r = client.post("/auth/heartbeat", headers=headers)
    assert r.status_code == 200
    assert r.json()["last_seen_at"] is not None


def test_bad_token_is_rejected(client):
    r = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert client.get("/auth/me").status_code == 401


def test_only_admins_change_roles(client, make_profile):
    admin = make_profile(is_admin=True)
    member = make_profile(is_responder=False)

    r = client.patch(f"/admin/profiles/{member.id}/roles", json={"is_responder": True}, headers=_auth(member))
    assert r.status_code == 403

    r = client.patch(f"/admin/profiles/{member.id}/roles", json={"is_responder": True}, headers=_auth(admin))
    assert r.status_code == 200
    assert r.json()["is_responder"] is True

    r = client.patch(f"/admin/profiles/{uuid.uuid4()}/roles", json={"is_admin": True}, headers=_auth(admin))
    assert r.status_code == 404


# ---------- monitoring sessions ----------


def test_anonymous_session_flow(client):
    r = client.post("/sessions", json={"location": LOCATION})
    assert r.status_code == 201
    anonymous_id = r.headers["X-Anonymous-Id"]
    first = r.json()
    assert first["status"] == "active"

    r = client.post("/sessions", json={"location": LOCATION}, headers=_anon(anonymous_id))
    second = r.json()
    assert second["id"] != first["id"]

    r = client.get("/sessions/active", headers=_anon(anonymous_id))
    assert r.json()["id"] == second["id"]

    r = client.put(f"/sessions/{second['id']}/check-ins", json={"count": 2}, headers=_anon(anonymous_id))
    assert r.status_code == 200
    assert r.json()["check_ins_count"] == 2

    r = client.put(f"/sessions/{second['id']}/check-ins", json={"count": 3}, headers=_anon("someone-else"))
    assert r.status_code == 403

    r = client.post(f"/sessions/{second['id']}/end", headers=_anon(anonymous_id))
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    assert r.json()["ended_at"] is not None

    r = client.post(f"/sessions/{second['id']}/end", json={"status": "emergency"}, headers=_anon(anonymous_id))
    assert r.json()["status"] == "completed"


def test_escalate_session_hands_off_alert(client):
    r = client.post("/sessions", json={"location": LOCATION}, headers=_anon("anon-escalate"))
    session_id = r.json()["id"]

    r = client.post(f"/sessions/{session_id}/escalate", headers=_anon("anon-escalate"))
    assert r.status_code == 201
    handoff = r.json()
    assert handoff["session_id"] == session_id
    assert handoff["source"] == "monitoring"
    assert handoff["precise_location"] == LOCATION["precise"]

    r = client.post(f"/sessions/{session_id}/escalate", headers=_anon("anon-escalate"))
    assert r.status_code == 409

    assert client.get("/sessions/active", headers=_anon("anon-escalate")).json() is None


def test_alert_for_someone_elses_session_is_forbidden(client):
    r = client.post("/sessions", json={"location": LOCATION}, headers=_anon("owner"))
    session_id = r.json()["id"]

    r = client.post("/alerts", json={"session_id": session_id, "location": LOCATION}, headers=_anon("intruder"))
    assert r.status_code == 403


# ---------- alerts and commitments ----------


def test_precise_location_only_for_committed_responders(client, make_profile):
    alert = _raise_alert(client)
    assert alert["precise_location"] == LOCATION["precise"]
    responder = make_profile()

    board = client.get("/alerts").json()
    assert [a["id"] for a in board] == [alert["id"]]
    assert board[0]["precise_location"] is None
    assert "anonymous_id" not in board[0]

    client.post(f"/alerts/{alert['id']}/commit", headers=_auth(responder))
    board = client.get("/alerts", headers=_auth(responder)).json()
    assert board[0]["precise_location"] == LOCATION["precise"]
    assert board[0]["status"] == "responded"
    assert board[0]["responder_count"] == 1


def test_commit_requires_responder_role(client, make_profile):
    alert = _raise_alert(client)
    assert client.post(f"/alerts/{alert['id']}/commit").status_code == 401

    bystander = make_profile(is_responder=False)
    assert client.post(f"/alerts/{alert['id']}/commit", headers=_auth(bystander)).status_code == 403


def test_commit_progress_cancel_flow(client, make_profile):
    alert = _raise_alert(client)
    responder = make_profile()
    headers = _auth(responder)

    first = client.post(f"/alerts/{alert['id']}/commit", headers=headers).json()
    again = client.post(f"/alerts/{alert['id']}/commit", headers=headers).json()
    assert first["created"] is True
    assert again == {"response_id": first["response_id"], "created": False}

    r = client.post(f"/alerts/{alert['id']}/progress", json={"status": "en_route"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "en_route"
    r = client.post(f"/alerts/{alert['id']}/progress", json={"status": "committed"}, headers=headers)
    assert r.status_code == 409

    assert client.get("/responses/mine", headers=headers).json() == {alert["id"]: "en_route"}

    r = client.post(
        f"/alerts/{alert['id']}/cancel-response",
        json={"reason": "Too far away", "details": "Stuck in traffic"},
        headers=headers,
    )
    assert r.json() == {"outcome": "cancelled"}
    r = client.post(f"/alerts/{alert['id']}/cancel-response", headers=headers)
    assert r.json() == {"outcome": "not_found"}

    board = client.get("/alerts").json()
    assert board[0]["status"] == "active"
    assert board[0]["responder_count"] == 0


def test_end_response_resolves_and_clears_board(client, make_profile):
    alert = _raise_alert(client)
    headers = _auth(make_profile())
    client.post(f"/alerts/{alert['id']}/commit", headers=headers)

    r = client.post(
        f"/alerts/{alert['id']}/end-response",
        json={"ambulance_called": True, "naloxone_used": True, "additional_notes": "Breathing again"},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    assert r.json()["naloxone_used"] is True

    assert client.get("/alerts").json() == []
    late = _auth(make_profile())
    assert client.post(f"/alerts/{alert['id']}/commit", headers=late).status_code == 409


def test_originator_cancels_alert(client):
    alert = _raise_alert(client, _anon("anon-owner"))

    assert client.post(f"/alerts/{alert['id']}/cancel", headers=_anon("anon-stranger")).status_code == 403
    r = client.post(f"/alerts/{alert['id']}/cancel", headers=_anon("anon-owner"))
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert client.get("/alerts").json() == []


def test_unknown_alert_is_404(client, make_profile):
    r = client.post(f"/alerts/{uuid.uuid4()}/commit", headers=_auth(make_profile()))
    assert r.status_code == 404


def test_stats(client, make_profile):
    alert = _raise_alert(client)
    responder = make_profile()
    client.post("/auth/heartbeat", headers=_auth(responder))
    client.post(f"/alerts/{alert['id']}/commit", headers=_auth(responder))

    r = client.get("/stats")
    assert r.status_code == 200
    assert r.json() == {
        "active_responders": 1,
        "committed_responders": 1,
        "alert_commitments": {alert["id"]: 1},
    }


# ---------- websocket ----------


def test_ws_requires_valid_token(client):
    with pytest.raises(WebSocketDisconnect) as missing:
        with client.websocket_connect("/ws"):
            pass
    assert missing.value.code == 4001

    with pytest.raises(WebSocketDisconnect) as invalid:
        with client.websocket_connect("/ws?token=garbage"):
            pass
    assert invalid.value.code == 4003


def test_ws_ping_and_alert_broadcast(client, make_profile):
    token = create_access_token(make_profile().id)
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_text("ping")
        assert ws.receive_json() == {"event": "pong"}

        alert = _raise_alert(client)
        message = ws.receive_json()
        assert message["event"] == "alerts.insert"
        assert message["data"]["row_id"] == alert["id"]
        assert "precise_location" not in message["data"]["record"]
        assert "anonymous_id" not in message["data"]["record"]
