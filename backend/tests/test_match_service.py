from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from betchat.realtime import event_room
from betchat.services.match_service import stake_window
from betchat.services.pool_service import PoolService


def _matches(session_factory, test_settings, event_id):
    session = session_factory()
    try:
        return PoolService(session, test_settings).list_matches(event_id)
    finally:
        session.close()


def test_stake_window_bounds():
    """Verify the accepted range is inclusive and stays inside the tolerance."""
    assert stake_window(10_000, Decimal("0.2")) == (8_000, 12_000)
    assert stake_window(10_001, Decimal("0.2")) == (8_001, 12_001)
    assert stake_window(10_000, Decimal("0")) == (10_000, 10_000)


def test_stake_is_matched_with_opposing_stake_of_similar_size(stakes, make_event, fund, broadcaster):
    """Verify a new stake pairs with an opposing stake within 20% and announces it."""
    event = make_event()
    fund("alice", 1000)
    fund("bob", 1000)

    first = stakes.place_stake(event.event_id, "alice", True, 100)
    second = stakes.place_stake(event.event_id, "bob", False, 120)

    assert first.match is None
    assert second.match is not None
    assert second.match.user_id == "bob"
    assert second.match.opponent_id == "alice"
    assert second.match.prediction is False
    assert second.match.amount_minor == 12_000
    assert second.match.opponent_amount_minor == 10_000
    assert second.match.status == "active"

    room = event_room(event.event_id)
    assert broadcaster.types_for(room)[-1] == "match_found"
    payload = broadcaster.messages[-1][2]
    assert payload["user1"] == {"id": "bob", "prediction": False, "wagerAmount": 120.0}
    assert payload["user2"] == {"id": "alice", "prediction": True, "wagerAmount": 100.0}


def test_stakes_outside_tolerance_or_same_side_stay_unmatched(stakes, make_event, fund, broadcaster):
    """Verify that same-side stakes and stakes more than 20% apart are not paired."""
    event = make_event()
    for user in ("alice", "bob", "carol"):
        fund(user, 1000)

    stakes.place_stake(event.event_id, "alice", True, 100)
    assert stakes.place_stake(event.event_id, "bob", True, 100).match is None
    assert stakes.place_stake(event.event_id, "carol", False, 130).match is None
    assert "match_found" not in broadcaster.types_for(event_room(event.event_id))


def test_most_recent_unmatched_opponent_is_chosen(stakes, make_event, fund, clock, session_factory, test_settings):
    """Verify pairing prefers the latest opposing stake and never reuses a matched one."""
    event = make_event()
    for user in ("alice", "bob", "carol", "dave", "erin"):
        fund(user, 1000)

    stakes.place_stake(event.event_id, "alice", True, 100)
    clock.advance(timedelta(minutes=1))
    stakes.place_stake(event.event_id, "bob", True, 100)
    clock.advance(timedelta(minutes=1))

    assert stakes.place_stake(event.event_id, "carol", False, 100).match.opponent_id == "bob"
    clock.advance(timedelta(minutes=1))
    assert stakes.place_stake(event.event_id, "dave", False, 100).match.opponent_id == "alice"
    clock.advance(timedelta(minutes=1))
    assert stakes.place_stake(event.event_id, "erin", False, 100).match is None

    matches = _matches(session_factory, test_settings, event.event_id)
    assert [(match.user_id, match.opponent_id) for match in matches] == [
        ("carol", "bob"),
        ("dave", "alice"),
    ]


def test_challenge_stakes_are_not_matched(challenges, fund, clock, broadcaster, session_factory, test_settings):
    """Verify the two parties of a challenge are not run through event matching."""
    fund("alice", 1000)
    fund("bob", 1000)
    view = challenges.create(
        challenger_id="alice",
        challenged_id="bob",
        title="Who finishes the book first?",
        wager_amount=Decimal("300"),
        due_date=clock.now + timedelta(days=1),
    )
    challenges.accept(view.challenge_id, "bob")

    assert _matches(session_factory, test_settings, view.challenge_id) == []
    assert "match_found" not in broadcaster.types_for(event_room(view.challenge_id))


def test_matching_failure_does_not_undo_stake(stakes, make_event, fund, balance):
    """Verify that a failing matcher leaves the committed stake in place."""
    event = make_event()
    fund("alice", 1000)
    stakes.matcher = MagicMock()
    stakes.matcher.match.side_effect = RuntimeError("lock timeout")

    receipt = stakes.place_stake(event.event_id, "alice", True, 100)

    assert receipt.match is None
    assert receipt.pool.total_minor == 10_000
    assert balance("alice") == 90_000


def test_settlement_completes_matches_with_winner(
    stakes, lifecycle, make_event, fund, clock, session_factory, test_settings
):
    """Verify settling an event closes its matches and records the winning user."""
    event = make_event()
    fund("alice", 1000)
    fund("bob", 1000)
    stakes.place_stake(event.event_id, "alice", True, 100)
    stakes.place_stake(event.event_id, "bob", False, 100)

    clock.advance(timedelta(hours=4))
    lifecycle.settle(event.event_id, False)

    (match,) = _matches(session_factory, test_settings, event.event_id)
    assert match.status == "completed"
    assert match.winner_id == "bob"
    assert match.completed_at is not None


def test_cancellation_cancels_matches(stakes, lifecycle, make_event, fund, session_factory, test_settings):
    """Verify cancelling an event closes its matches without a winner."""
    event = make_event()
    fund("alice", 1000)
    fund("bob", 1000)
    stakes.place_stake(event.event_id, "alice", True, 100)
    stakes.place_stake(event.event_id, "bob", False, 100)

    lifecycle.cancel(event.event_id)

    (match,) = _matches(session_factory, test_settings, event.event_id)
    assert match.status == "cancelled"
    assert match.winner_id is None
