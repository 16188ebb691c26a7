"""Per-event pool aggregates."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from betchat.core.errors import InvalidAmount, PoolNotFound
from betchat.domain import Outcome, PoolSnapshot
from betchat.models import EventPool, utcnow


class PoolRepository:
    """Authoritative running totals of stakes split by outcome.

    Writes are single ``UPDATE`` statements that move ``total_minor`` and the
    side column together, so ``total == yes + no`` holds after every commit and
    concurrent stakes never overwrite each other.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def initialize(self, event_id: str) -> EventPool:
        pool = EventPool(event_id=event_id, total_minor=0, yes_minor=0, no_minor=0)
        self._session.add(pool)
        self._session.flush()
        return pool

    def apply_stake(self, event_id: str, outcome: Outcome, amount_minor: int) -> None:
        if amount_minor <= 0:
            raise InvalidAmount("Stake amount must be positive")

        side_column = EventPool.yes_minor if outcome is Outcome.YES else EventPool.no_minor
        statement = (
            update(EventPool)
            .where(EventPool.event_id == event_id)
            .values(
                {
                    EventPool.total_minor: EventPool.total_minor + amount_minor,
                    side_column: side_column + amount_minor,
                    EventPool.updated_at: utcnow(),
                }
            )
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(statement)
        if result.rowcount == 0:
            raise PoolNotFound(f"No pool exists for event {event_id}")

    # ------------------------------------------------------------------
    # Queries

    def read(self, event_id: str) -> PoolSnapshot:
        row = self._session.execute(
            select(EventPool.total_minor, EventPool.yes_minor, EventPool.no_minor).where(
                EventPool.event_id == event_id
            )
        ).one_or_none()
        if row is None:
            raise PoolNotFound(f"No pool exists for event {event_id}")
        total_minor, yes_minor, no_minor = row
        return PoolSnapshot(
            event_id=event_id,
            total_minor=int(total_minor),
            yes_minor=int(yes_minor),
            no_minor=int(no_minor),
        )


__all__ = ["PoolRepository"]
