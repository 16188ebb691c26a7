"""Standalone job that finishes interrupted refunds and payouts."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from betchat.core.config import Settings, get_settings
from betchat.db import SessionLocal, init_db, session_scope
from betchat.ledger import LedgerAdapter, build_ledger
from betchat.repositories import EventRepository
from betchat.services.lifecycle_service import EventLifecycleManager
from betchat.services.stake_service import Clock, utc_clock


@dataclass(slots=True)
class SweepSummary:
    cancelled_events: int = 0
    refunds_completed: int = 0
    refunds_pending: int = 0
    settling_events: int = 0
    payouts_completed: int = 0
    payouts_pending: int = 0
    awaiting_outcome: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cancelled_events": self.cancelled_events,
            "refunds_completed": self.refunds_completed,
            "refunds_pending": self.refunds_pending,
            "settling_events": self.settling_events,
            "payouts_completed": self.payouts_completed,
            "payouts_pending": self.payouts_pending,
            "awaiting_outcome": self.awaiting_outcome,
            "failures": self.failures,
        }


class LifecycleSweep:
    """Resume per-participant refunds and payouts left behind by failed ledger calls."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        session_factory: sessionmaker[Session] | None = None,
        ledger: LedgerAdapter | None = None,
        clock: Clock = utc_clock,
        create_tables: bool = True,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory or SessionLocal
        self._create_tables = create_tables
        self._clock = clock
        self.lifecycle = EventLifecycleManager(
            self._session_factory,
            ledger=ledger or build_ledger(self.settings),
            settings=self.settings,
            clock=clock,
        )

    def run(
        self,
        *,
        limit: int | None = None,
        batch_size: int | None = None,
        event_ids: Sequence[str] | None = None,
    ) -> SweepSummary:
        if self._create_tables:
            init_db(self._session_factory.kw.get("bind"))
        summary = SweepSummary()
        batch_size = batch_size or self.settings.sweep_batch_size
        event_filter = list(event_ids) if event_ids else None

        logger.info(
            "Starting lifecycle sweep: limit={}, batch_size={}, event_filter={}",
            limit,
            batch_size,
            event_filter,
        )

        with session_scope(self._session_factory) as session:
            events = EventRepository(session)
            refund_candidates = events.events_pending_refunds(limit=limit, event_ids=event_filter)
            payout_candidates = events.events_pending_payouts(limit=limit, event_ids=event_filter)
            summary.awaiting_outcome = events.count_awaiting_outcome(
                now=self._clock(), event_ids=event_filter
            )

        summary.cancelled_events = len(refund_candidates)
        for chunk in _chunked(refund_candidates, batch_size):
            for event_id in chunk:
                try:
                    result = self.lifecycle.resume_refunds(event_id)
                except Exception as exc:
                    logger.exception("Refund sweep failed for event={}", event_id)
                    summary.failures.append({"event_id": event_id, "stage": "refund", "error": str(exc)})
                    continue
                if result.completed:
                    summary.refunds_completed += 1
                summary.refunds_pending += result.pending

        summary.settling_events = len(payout_candidates)
        for chunk in _chunked(payout_candidates, batch_size):
            for event_id in chunk:
                try:
                    result = self.lifecycle.resume_payouts(event_id)
                except Exception as exc:
                    logger.exception("Payout sweep failed for event={}", event_id)
                    summary.failures.append({"event_id": event_id, "stage": "payout", "error": str(exc)})
                    continue
                if result.completed:
                    summary.payouts_completed += 1
                summary.payouts_pending += result.pending

        logger.info(
            "Lifecycle sweep finished: refunds_completed={}/{}, payouts_completed={}/{}, awaiting_outcome={}",
            summary.refunds_completed,
            summary.cancelled_events,
            summary.payouts_completed,
            summary.settling_events,
            summary.awaiting_outcome,
        )
        return summary

    def close(self) -> None:
        close = getattr(self.lifecycle.ledger, "close", None)
        if callable(close):
            close()


def _chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    if size <= 0:
        yield items
        return
    for index in range(0, len(items), size):
        yield items[index : index + size]


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Finish outstanding refunds for cancelled events and payouts for settled events",
    )
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of events per stage")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Override the number of events handled per batch",
    )
    parser.add_argument(
        "--event-id",
        dest="event_ids",
        action="append",
        help="Restrict the sweep to specific event IDs (can be provided multiple times)",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args(argv)


def _write_summary(summary: SweepSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Sweep summary written to {}", path)


def main(argv: Sequence[str] | None = None) -> SweepSummary:
    args = _parse_args(argv)
    settings = get_settings()
    sweep = LifecycleSweep(settings)
    try:
        summary = sweep.run(
            limit=args.limit,
            batch_size=args.batch_size,
            event_ids=args.event_ids,
        )
    finally:
        sweep.close()

    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
