from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from betchat.core.errors import (
    ChallengeNotFound,
    InsufficientBalance,
    InvalidTransition,
    NotPermitted,
    ValidationFailed,
)
from betchat.domain import ChallengeStatus, EscrowStatus
from betchat.realtime import challenge_room


@pytest.fixture
def open_challenge(challenges, fund, clock):
    """Create a 200-unit challenge from alice to bob with both accounts funded."""

    fund("alice", 1000)
    fund("bob", 1000)

    def _open(**overrides):
        values = {
            "challenger_id": "alice",
            "challenged_id": "bob",
            "title": "Who wins the 5k run?",
            "wager_amount": Decimal("200"),
            "due_date": clock.now + timedelta(days=1),
        }
        values.update(overrides)
        return challenges.create(**values)

    return _open


def test_create_challenge_escrows_the_challenger_stake(open_challenge, balance):
    """Verify the challenger's wager is locked on creation."""
    view = open_challenge()

    assert view.status is ChallengeStatus.PENDING
    assert view.escrow_status is EscrowStatus.LOCKED
    assert view.event.is_private is True
    assert view.event.max_participants == 2
    assert [(item.user_id, item.prediction) for item in view.participants] == [("alice", True)]
    assert balance("alice") == 80_000


def test_cannot_challenge_yourself(open_challenge):
    """Verify self-challenges are rejected."""
    with pytest.raises(ValidationFailed):
        open_challenge(challenged_id="alice")


def test_due_date_must_leave_minimum_duration(open_challenge, clock):
    """Verify the due date must be more than the minimum duration away."""
    with pytest.raises(ValidationFailed):
        open_challenge(due_date=clock.now + timedelta(minutes=10))


def test_failed_escrow_cancels_the_challenge(open_challenge, challenges):
    """Verify a challenge the challenger cannot fund is not left open."""
    with pytest.raises(InsufficientBalance):
        open_challenge(wager_amount=Decimal("5000"))

    [view] = challenges.list_for_user("alice")
    assert view.status is ChallengeStatus.CANCELLED
    assert view.escrow_status is EscrowStatus.NONE


def test_accept_matches_the_stake(open_challenge, challenges, balance, broadcaster):
    """Verify acceptance stakes the opposite side with an equal wager."""
    view = open_challenge()

    accepted = challenges.accept(view.challenge_id, "bob")

    assert accepted.status is ChallengeStatus.ACTIVE
    assert [(item.user_id, item.prediction) for item in accepted.participants] == [
        ("alice", True),
        ("bob", False),
    ]
    assert balance("bob") == 80_000
    assert "challenge_accepted" in broadcaster.types_for(challenge_room(view.challenge_id))
    assert "bet_placed" in broadcaster.types_for(challenge_room(view.challenge_id))


def test_only_the_challenged_user_can_accept(open_challenge, challenges, stakes, fund):
    """Verify outsiders can neither accept nor stake on a challenge."""
    view = open_challenge()
    fund("mallory", 1000)

    with pytest.raises(NotPermitted):
        challenges.accept(view.challenge_id, "mallory")
    with pytest.raises(NotPermitted):
        stakes.place_stake(view.challenge_id, "mallory", False)


def test_challenge_stake_must_equal_wager(open_challenge, stakes):
    """Verify the challenged party cannot stake a different amount."""
    view = open_challenge()
    with pytest.raises(ValidationFailed):
        stakes.place_stake(view.challenge_id, "bob", False, Decimal("150"))


def test_decline_refunds_the_challenger(open_challenge, challenges, balance):
    """Verify declining cancels the challenge and releases the escrow."""
    view = open_challenge()

    declined = challenges.decline(view.challenge_id, "bob")

    assert declined.status is ChallengeStatus.DECLINED
    assert declined.escrow_status is EscrowStatus.REFUNDED
    assert balance("alice") == 100_000


def test_accepted_challenge_cannot_be_declined_or_withdrawn(open_challenge, challenges):
    """Verify decline and withdraw only apply to pending challenges."""
    view = open_challenge()
    challenges.accept(view.challenge_id, "bob")

    with pytest.raises(InvalidTransition):
        challenges.decline(view.challenge_id, "bob")
    with pytest.raises(InvalidTransition):
        challenges.cancel(view.challenge_id, "alice")


def test_challenger_can_withdraw_pending_challenge(open_challenge, challenges, balance):
    """Verify withdrawal refunds the challenger and blocks acceptance."""
    view = open_challenge()

    with pytest.raises(NotPermitted):
        challenges.cancel(view.challenge_id, "bob")
    summary = challenges.cancel(view.challenge_id, "alice")

    assert summary.completed is True
    assert balance("alice") == 100_000
    assert challenges.get(view.challenge_id).status is ChallengeStatus.CANCELLED
    with pytest.raises(InvalidTransition):
        challenges.accept(view.challenge_id, "bob")


def test_settle_pays_the_whole_pool_to_the_winner(open_challenge, challenges, balance):
    """Verify the winner receives both stakes."""
    view = open_challenge()
    challenges.accept(view.challenge_id, "bob")

    summary = challenges.settle(view.challenge_id, "bob", requested_by="alice")

    assert summary.completed is True
    assert summary.winning_outcome is False
    assert balance("bob") == 120_000
    assert balance("alice") == 80_000
    settled = challenges.get(view.challenge_id)
    assert settled.status is ChallengeStatus.COMPLETED
    assert settled.escrow_status is EscrowStatus.RELEASED
    assert settled.winner_id == "bob"


def test_settle_requires_acceptance_and_a_valid_winner(open_challenge, challenges):
    """Verify settlement guards."""
    view = open_challenge()

    with pytest.raises(InvalidTransition):
        challenges.settle(view.challenge_id, "alice", requested_by="alice")

    challenges.accept(view.challenge_id, "bob")
    with pytest.raises(NotPermitted):
        challenges.settle(view.challenge_id, "alice", requested_by="mallory")
    with pytest.raises(ValidationFailed):
        challenges.settle(view.challenge_id, "mallory", requested_by="alice")


def test_lookups(open_challenge, challenges, make_event):
    """Verify challenge retrieval and that plain events are not challenges."""
    view = open_challenge()
    event = make_event()

    assert challenges.get(view.challenge_id).event.title == "Who wins the 5k run?"
    assert [item.challenge_id for item in challenges.list_for_user("bob")] == [view.challenge_id]
    assert challenges.list_for_user("carol") == []
    with pytest.raises(ChallengeNotFound):
        challenges.get("missing")
    with pytest.raises(ChallengeNotFound):
        challenges.get(event.event_id)
