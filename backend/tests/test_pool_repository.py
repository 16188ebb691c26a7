from __future__ import annotations

import pytest

from betchat.core.errors import InvalidAmount, PoolNotFound
from betchat.db import session_scope
from betchat.domain import Outcome
from betchat.repositories import PoolRepository


def test_new_event_starts_with_an_empty_pool(make_event, session_factory):
    """Verify that creating an event initializes a zeroed pool."""
    event = make_event()
    with session_scope(session_factory) as session:
        snapshot = PoolRepository(session).read(event.event_id)
    assert (snapshot.total_minor, snapshot.yes_minor, snapshot.no_minor) == (0, 0, 0)


def test_apply_stake_moves_total_and_side_together(make_event, session_factory):
    """Verify that total == yes + no after every stake."""
    event = make_event()
    stakes = [(Outcome.YES, 30_000), (Outcome.NO, 20_000), (Outcome.YES, 12_345)]
    for outcome, amount in stakes:
        with session_scope(session_factory) as session:
            PoolRepository(session).apply_stake(event.event_id, outcome, amount)

    with session_scope(session_factory) as session:
        snapshot = PoolRepository(session).read(event.event_id)
    assert snapshot.yes_minor == 42_345
    assert snapshot.no_minor == 20_000
    assert snapshot.total_minor == snapshot.yes_minor + snapshot.no_minor


def test_apply_stake_rejects_non_positive_amounts(make_event, session_factory):
    """Verify that zero or negative stakes raise InvalidAmount."""
    event = make_event()
    with session_scope(session_factory) as session:
        pools = PoolRepository(session)
        with pytest.raises(InvalidAmount):
            pools.apply_stake(event.event_id, Outcome.YES, 0)
        with pytest.raises(InvalidAmount):
            pools.apply_stake(event.event_id, Outcome.NO, -100)


def test_missing_pool_raises_pool_not_found(db_components, session_factory):
    """Verify that reads and stakes on an unknown event raise PoolNotFound."""
    with session_scope(session_factory) as session:
        pools = PoolRepository(session)
        with pytest.raises(PoolNotFound):
            pools.read("missing")
        with pytest.raises(PoolNotFound):
            pools.apply_stake("missing", Outcome.YES, 10_000)
