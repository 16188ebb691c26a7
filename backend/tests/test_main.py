from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from betchat import main
from betchat.db import get_db
from betchat.main import app, hub


@pytest.fixture
def client(test_settings, session_factory, ledger, stakes, lifecycle):
    """Test client wired to a per-test database that cleans up overrides afterwards."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[main._app_settings] = lambda: test_settings
    app.dependency_overrides[main._session_factory] = lambda: session_factory
    app.dependency_overrides[main._ledger_adapter] = lambda: ledger
    app.dependency_overrides[main._stake_orchestrator] = lambda: stakes
    app.dependency_overrides[main._lifecycle_manager] = lambda: lifecycle
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _headers(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def _create_event(client, clock, user_id="creator", **overrides):
    payload = {
        "title": "Will it rain in Lagos tomorrow?",
        "category": "weather",
        "type": "prediction",
        "startTime": (clock.now + timedelta(hours=1)).isoformat(),
        "endTime": (clock.now + timedelta(hours=3)).isoformat(),
        "wagerAmount": 100,
    }
    payload.update(overrides)
    return client.post("/api/events", json=payload, headers=_headers(user_id))


def test_healthcheck(client):
    """Verify the healthcheck endpoint returns a successful response."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_event(client, clock):
    """Verify event creation returns the stored event with an empty pool."""
    response = _create_event(client, clock)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "scheduled"
    assert body["type"] == "prediction"
    assert body["wagerAmount"] == 100.0
    assert body["totalAmount"] == 0.0
    assert body["creatorId"] == "creator"
    assert body["maxParticipants"] == 100


def test_requests_without_identity_are_rejected(client, clock):
    """Verify that mutating routes require the caller's identity."""
    response = client.post(
        "/api/events",
        json={
            "title": "x",
            "startTime": (clock.now + timedelta(hours=1)).isoformat(),
            "endTime": (clock.now + timedelta(hours=3)).isoformat(),
            "wagerAmount": 100,
        },
    )
    assert response.status_code == 401


def test_invalid_event_returns_error_code(client, clock):
    """Verify domain validation errors render as {message, code}."""
    response = _create_event(client, clock, startTime=(clock.now - timedelta(hours=1)).isoformat())
    assert response.status_code == 422
    assert response.json() == {
        "message": "Event start time must be in the future",
        "code": "validation_failed",
    }


def test_join_flow(client, clock, fund):
    """Verify joining, reading the pool and duplicate protection over HTTP."""
    event_id = _create_event(client, clock).json()["id"]
    fund("alice", 1000)

    response = client.post(
        f"/api/events/{event_id}/join",
        json={"prediction": True, "wagerAmount": 250},
        headers=_headers("alice"),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Successfully joined event"
    assert body["pool"] == {"totalAmount": 250.0, "yesAmount": 250.0, "noAmount": 0.0}
    assert body["yesOdds"] == 10.0
    assert body["noOdds"] == 1.1

    duplicate = client.post(
        f"/api/events/{event_id}/join", json={"prediction": False}, headers=_headers("alice")
    )
    assert duplicate.status_code == 409
    assert duplicate.json() == {"message": "Already joined this event", "code": "already_joined"}

    pool = client.get(f"/api/events/{event_id}/pool").json()
    assert pool["totalAmount"] == 250.0
    assert pool["yesParticipants"] == 1
    assert pool["noParticipants"] == 0

    participants = client.get(f"/api/events/{event_id}/participants").json()
    assert [item["userId"] for item in participants] == ["alice"]
    assert client.get(f"/api/events/{event_id}").json()["participantCount"] == 1


def test_stake_below_minimum_message(client, clock, fund):
    """Verify the minimum stake error message reaches the client."""
    event_id = _create_event(client, clock).json()["id"]
    fund("alice", 1000)
    response = client.post(
        f"/api/events/{event_id}/join",
        json={"prediction": True, "wagerAmount": 99},
        headers=_headers("alice"),
    )
    assert response.status_code == 422
    assert response.json() == {"message": "Minimum bet amount is ₦100", "code": "stake_below_minimum"}


def test_insufficient_balance_status(client, clock, fund):
    """Verify insufficient funds map to 400."""
    event_id = _create_event(client, clock).json()["id"]
    fund("bob", 50)
    response = client.post(
        f"/api/events/{event_id}/join", json={"prediction": True}, headers=_headers("bob")
    )
    assert response.status_code == 400
    assert response.json()["code"] == "insufficient_balance"


def test_participation_is_private_to_its_user(client, clock, fund):
    """Verify users can read only their own participation."""
    event_id = _create_event(client, clock).json()["id"]
    fund("alice", 1000)
    client.post(f"/api/events/{event_id}/join", json={"prediction": False}, headers=_headers("alice"))

    own = client.get(f"/api/events/{event_id}/participation/alice", headers=_headers("alice"))
    assert own.status_code == 200
    assert own.json()["hasJoined"] is True
    assert own.json()["prediction"] is False

    other = client.get(f"/api/events/{event_id}/participation/alice", headers=_headers("bob"))
    assert other.status_code == 403

    missing = client.get(f"/api/events/{event_id}/participation/bob", headers=_headers("bob"))
    assert missing.json()["hasJoined"] is False


def test_unknown_event_returns_404(client):
    """Verify unknown events render the not-found error."""
    response = client.get("/api/events/missing/pool")
    assert response.status_code == 404
    assert response.json() == {"message": "Event not found", "code": "event_not_found"}


def test_list_events_by_status(client, clock):
    """Verify the list endpoint filters by derived status."""
    _create_event(client, clock, title="First")
    _create_event(client, clock, title="Second", category="sports")

    scheduled = client.get("/api/events", params={"status": "scheduled"}).json()
    live = client.get("/api/events", params={"status": "live"}).json()
    sports = client.get("/api/events", params={"category": "sports"}).json()

    assert scheduled["total"] == 2
    assert live == {"total": 0, "items": []}
    assert [item["title"] for item in sports["items"]] == ["Second"]


def test_cancel_and_settle_routes(client, clock, fund, balance):
    """Verify cancellation refunds and settlement payouts through the API."""
    cancelled_id = _create_event(client, clock).json()["id"]
    settled_id = _create_event(client, clock).json()["id"]
    for user in ("alice", "bob"):
        fund(user, 1000)
        client.post(f"/api/events/{cancelled_id}/join", json={"prediction": True}, headers=_headers(user))
    client.post(f"/api/events/{settled_id}/join", json={"prediction": True}, headers=_headers("alice"))
    client.post(f"/api/events/{settled_id}/join", json={"prediction": False}, headers=_headers("bob"))

    forbidden = client.post(f"/api/events/{cancelled_id}/cancel", headers=_headers("alice"))
    assert forbidden.status_code == 403

    cancel = client.post(
        f"/api/events/{cancelled_id}/cancel", json={"reason": "Weather"}, headers=_headers("creator")
    )
    assert cancel.status_code == 200
    assert cancel.json()["refunded"] == 2
    assert cancel.json()["refundedAmount"] == 200.0

    early = client.post(
        f"/api/events/{settled_id}/settle", json={"winningOutcome": True}, headers=_headers("creator")
    )
    assert early.status_code == 409

    clock.advance(timedelta(hours=4))
    settle = client.post(
        f"/api/events/{settled_id}/settle", json={"winningOutcome": True}, headers=_headers("creator")
    )
    assert settle.status_code == 200
    assert settle.json()["completed"] is True
    assert settle.json()["paidOut"] == 200.0
    assert balance("alice") == 110_000
    assert balance("bob") == 90_000


def test_challenge_routes(client, clock, fund, balance):
    """Verify the challenge lifecycle over HTTP."""
    fund("alice", 1000)
    fund("bob", 1000)
    created = client.post(
        "/api/challenges",
        json={
            "challengedId": "bob",
            "title": "Who finishes the book first?",
            "wagerAmount": 300,
            "dueDate": (clock.now + timedelta(days=3)).isoformat(),
        },
        headers=_headers("alice"),
    )
    assert created.status_code == 201
    challenge = created.json()
    assert challenge["status"] == "pending"
    assert challenge["escrowStatus"] == "locked"

    accepted = client.post(f"/api/challenges/{challenge['id']}/accept", headers=_headers("bob"))
    assert accepted.json()["status"] == "active"

    listed = client.get("/api/challenges", headers=_headers("bob")).json()
    assert listed["total"] == 1

    settled = client.post(
        f"/api/challenges/{challenge['id']}/settle",
        json={"winnerId": "alice"},
        headers=_headers("bob"),
    )
    assert settled.status_code == 200
    assert balance("alice") == 130_000
    assert client.get(f"/api/challenges/{challenge['id']}").json()["winnerId"] == "alice"


def test_websocket_room_subscription(client):
    """Verify websocket clients receive messages for rooms they joined."""
    with client.websocket_connect("/ws") as websocket:
        websocket.send_json({"type": "join_event", "eventId": "e1"})
        assert websocket.receive_json() == {"type": "room_joined", "data": {"room": "event:e1"}}

        assert hub.publish("event:e1", "bet_placed", {"eventId": "e1"}) == 1
        assert websocket.receive_json() == {"type": "bet_placed", "data": {"eventId": "e1"}}

        websocket.send_json({"type": "shout"})
        assert websocket.receive_json()["type"] == "error"

        websocket.send_json({"type": "leave_event", "eventId": "e1"})
        assert websocket.receive_json() == {"type": "room_left", "data": {"room": "event:e1"}}


def test_oversized_amounts_are_rejected_as_validation_errors(client, clock, fund, balance):
    """Verify amounts beyond the supported range return 422 and change nothing."""
    created = _create_event(client, clock, wagerAmount=100000000000000000)
    assert created.status_code == 422
    assert created.json()["code"] == "invalid_amount"

    event_id = _create_event(client, clock).json()["id"]
    fund("alice", 1000)
    response = client.post(
        f"/api/events/{event_id}/join",
        json={"prediction": True, "wagerAmount": 1e30},
        headers=_headers("alice"),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_amount"
    assert balance("alice") == 100_000
    assert client.get(f"/api/events/{event_id}/pool").json()["totalAmount"] == 0.0


def test_join_reports_matched_opponent(client, clock, fund):
    """Verify the join response names the opposing stake it was paired with."""
    event_id = _create_event(client, clock).json()["id"]
    fund("alice", 1000)
    fund("bob", 1000)

    first = client.post(
        f"/api/events/{event_id}/join", json={"prediction": True}, headers=_headers("alice")
    ).json()
    second = client.post(
        f"/api/events/{event_id}/join",
        json={"prediction": False, "wagerAmount": 110},
        headers=_headers("bob"),
    ).json()

    assert first["matched"] is False
    assert first["matchedWith"] is None
    assert second["matched"] is True
    assert second["matchedWith"] == "alice"

    matches = client.get(f"/api/events/{event_id}/matches").json()
    assert len(matches) == 1
    assert matches[0]["userId"] == "bob"
    assert matches[0]["opponentId"] == "alice"
    assert matches[0]["amount"] == 110.0
    assert matches[0]["opponentAmount"] == 100.0
    assert matches[0]["status"] == "active"
