"""Participation rows: one stake per (event, user)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from betchat.models import EventParticipant

from .types import SideCounts


class ParticipationRepository:
    """Persistence for event participations and their payout bookkeeping."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def insert(
        self,
        *,
        event_id: str,
        user_id: str,
        prediction: bool,
        wager_minor: int,
        joined_at: datetime,
    ) -> EventParticipant:
        """Insert the participation and flush so the unique constraint fires here."""

        participation = EventParticipant(
            event_id=event_id,
            user_id=user_id,
            prediction=prediction,
            wager_minor=wager_minor,
            joined_at=joined_at,
        )
        self._session.add(participation)
        self._session.flush()
        return participation

    def record_odds(self, participation: EventParticipant, odds: Decimal) -> None:
        participation.odds_at_join = odds
        self._session.flush()

    def assign_payouts(self, payouts: dict[int, int]) -> None:
        for participation_id, amount in payouts.items():
            self._session.execute(
                update(EventParticipant)
                .where(
                    EventParticipant.participation_id == participation_id,
                    EventParticipant.payout_minor.is_(None),
                )
                .values(payout_minor=amount)
                .execution_options(synchronize_session=False)
            )

    def mark_paid(self, participation_id: int, *, at: datetime) -> bool:
        result = self._session.execute(
            update(EventParticipant)
            .where(
                EventParticipant.participation_id == participation_id,
                EventParticipant.paid_at.is_(None),
            )
            .values(paid_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_refunded(self, participation_id: int, *, at: datetime) -> bool:
        result = self._session.execute(
            update(EventParticipant)
            .where(
                EventParticipant.participation_id == participation_id,
                EventParticipant.refunded_at.is_(None),
            )
            .values(refunded_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Queries

    def get(self, event_id: str, user_id: str) -> EventParticipant | None:
        query = select(EventParticipant).where(
            EventParticipant.event_id == event_id,
            EventParticipant.user_id == user_id,
        )
        return self._session.execute(query).scalar_one_or_none()

    def get_by_id(self, participation_id: int) -> EventParticipant | None:
        return self._session.get(EventParticipant, participation_id)

    def list_for_event(self, event_id: str) -> list[EventParticipant]:
        query = (
            select(EventParticipant)
            .where(EventParticipant.event_id == event_id)
            .order_by(EventParticipant.joined_at.asc(), EventParticipant.participation_id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def count(self, event_id: str) -> int:
        query = select(func.count(EventParticipant.participation_id)).where(
            EventParticipant.event_id == event_id
        )
        return int(self._session.execute(query).scalar_one())

    def side_counts(self, event_id: str) -> SideCounts:
        query = (
            select(EventParticipant.prediction, func.count(EventParticipant.participation_id))
            .where(EventParticipant.event_id == event_id)
            .group_by(EventParticipant.prediction)
        )
        counts = SideCounts()
        for prediction, count in self._session.execute(query).all():
            if prediction:
                counts.yes = int(count)
            else:
                counts.no = int(count)
        return counts

    def unpaid_winners(self, event_id: str) -> list[EventParticipant]:
        query = (
            select(EventParticipant)
            .where(
                EventParticipant.event_id == event_id,
                EventParticipant.payout_minor > 0,
                EventParticipant.paid_at.is_(None),
            )
            .order_by(EventParticipant.joined_at.asc(), EventParticipant.participation_id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def unrefunded(self, event_id: str) -> list[EventParticipant]:
        query = (
            select(EventParticipant)
            .where(
                EventParticipant.event_id == event_id,
                EventParticipant.refunded_at.is_(None),
            )
            .order_by(EventParticipant.joined_at.asc(), EventParticipant.participation_id.asc())
        )
        return list(self._session.execute(query).scalars().all())


__all__ = ["ParticipationRepository"]
