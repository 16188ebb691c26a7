from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from betchat.core.errors import LedgerUnavailable
from betchat.ledger import SqlLedger
from betchat.services.lifecycle_service import EventLifecycleManager
from pipelines.lifecycle_sweep import LifecycleSweep, SweepSummary, _chunked, _parse_args, _write_summary


class OfflineLedger(SqlLedger):
    """SQL ledger that refuses every credit."""

    def credit(self, session, user_id, amount_minor, *, reference, description=None):
        raise LedgerUnavailable()


@pytest.fixture
def offline_lifecycle(session_factory, test_settings, clock):
    return EventLifecycleManager(
        session_factory,
        ledger=OfflineLedger(),
        settings=test_settings,
        clock=clock,
        sleep=lambda _: None,
    )


@pytest.fixture
def sweep(test_settings, session_factory, ledger, clock):
    return LifecycleSweep(test_settings, session_factory=session_factory, ledger=ledger, clock=clock)


def test_sweep_finishes_interrupted_refunds_and_payouts(
    make_event, stakes, offline_lifecycle, sweep, fund, balance, clock
):
    """Verify the sweep completes work left behind by ledger outages."""
    cancelled = make_event(title="Cancelled")
    settled = make_event(title="Settled")
    for user in ("alice", "bob"):
        fund(user, 1000)
        stakes.place_stake(cancelled.event_id, user, True, 100)
    stakes.place_stake(settled.event_id, "alice", True, 200)
    stakes.place_stake(settled.event_id, "bob", False, 200)

    assert offline_lifecycle.cancel(cancelled.event_id).pending == 2
    clock.advance(timedelta(hours=4))
    assert offline_lifecycle.settle(settled.event_id, False).pending == 1

    summary = sweep.run()

    assert summary.cancelled_events == 1
    assert summary.refunds_completed == 1
    assert summary.settling_events == 1
    assert summary.payouts_completed == 1
    assert summary.failures == []
    assert balance("alice") == 80_000
    assert balance("bob") == 120_000

    again = sweep.run()
    assert again.cancelled_events == 0
    assert again.settling_events == 0


def test_sweep_counts_events_awaiting_an_outcome(make_event, sweep, clock):
    """Verify ended but unsettled events are reported."""
    make_event()
    make_event()
    assert sweep.run().awaiting_outcome == 0
    clock.advance(timedelta(hours=4))
    assert sweep.run().awaiting_outcome == 2


def test_sweep_records_failures_and_continues(make_event, stakes, offline_lifecycle, sweep, fund):
    """Verify one failing event does not stop the sweep."""
    event = make_event()
    fund("alice", 1000)
    stakes.place_stake(event.event_id, "alice", True, 100)
    offline_lifecycle.cancel(event.event_id)

    sweep.lifecycle = MagicMock()
    sweep.lifecycle.resume_refunds.side_effect = RuntimeError("database went away")

    summary = sweep.run(event_ids=[event.event_id])

    assert summary.refunds_completed == 0
    assert summary.failures == [
        {"event_id": event.event_id, "stage": "refund", "error": "database went away"}
    ]


def test_chunked_batches():
    """Verify batching of event IDs."""
    assert list(_chunked(["a", "b", "c"], 2)) == [["a", "b"], ["c"]]
    assert list(_chunked(["a"], 0)) == [["a"]]


def test_cli_arguments_and_summary_file(tmp_path):
    """Verify CLI parsing and the JSON summary report."""
    args = _parse_args(["--limit", "5", "--event-id", "e1", "--event-id", "e2", "--summary-path", str(tmp_path / "out.json")])
    assert args.limit == 5
    assert args.event_ids == ["e1", "e2"]

    _write_summary(SweepSummary(refunds_completed=3), args.summary_path)
    assert json.loads(args.summary_path.read_text())["refunds_completed"] == 3
