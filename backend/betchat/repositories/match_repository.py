"""Pairings of opposing stakes on an event."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from betchat.models import EventMatch, EventParticipant, MatchStatus


class MatchRepository:
    """Persistence for stake pairings and their completion."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def insert(self, participation: EventParticipant, opponent: EventParticipant) -> EventMatch:
        match = EventMatch(
            event_id=participation.event_id,
            participation_id=participation.participation_id,
            opponent_participation_id=opponent.participation_id,
            user_id=participation.user_id,
            opponent_id=opponent.user_id,
            prediction=participation.prediction,
            amount_minor=participation.wager_minor,
            opponent_amount_minor=opponent.wager_minor,
            status=MatchStatus.ACTIVE.value,
            created_at=participation.joined_at,
        )
        self._session.add(match)
        self._session.flush()
        return match

    def complete_for_event(self, event_id: str, winning_outcome: bool, *, at: datetime) -> int:
        """Close every active match of the event, recording the side that won."""

        matches = self.list_for_event(event_id, status=MatchStatus.ACTIVE)
        for match in matches:
            match.status = MatchStatus.COMPLETED.value
            match.winner_id = match.user_id if match.prediction == winning_outcome else match.opponent_id
            match.completed_at = at
        self._session.flush()
        return len(matches)

    def cancel_for_event(self, event_id: str, *, at: datetime) -> int:
        result = self._session.execute(
            update(EventMatch)
            .where(
                EventMatch.event_id == event_id,
                EventMatch.status == MatchStatus.ACTIVE.value,
            )
            .values(status=MatchStatus.CANCELLED.value, completed_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries

    def find_opponent(
        self,
        participation: EventParticipant,
        *,
        low_minor: int,
        high_minor: int,
    ) -> EventParticipant | None:
        """Most recent unmatched opposing stake with an amount in ``[low_minor, high_minor]``."""

        matched = select(EventMatch.participation_id).where(
            EventMatch.event_id == participation.event_id
        )
        matched_opponents = select(EventMatch.opponent_participation_id).where(
            EventMatch.event_id == participation.event_id
        )
        query = (
            select(EventParticipant)
            .where(
                EventParticipant.event_id == participation.event_id,
                EventParticipant.prediction == (not participation.prediction),
                EventParticipant.participation_id != participation.participation_id,
                EventParticipant.wager_minor >= low_minor,
                EventParticipant.wager_minor <= high_minor,
                EventParticipant.participation_id.not_in(matched),
                EventParticipant.participation_id.not_in(matched_opponents),
            )
            .order_by(EventParticipant.joined_at.desc(), EventParticipant.participation_id.desc())
            .limit(1)
        )
        return self._session.execute(query).scalar_one_or_none()

    def list_for_event(
        self, event_id: str, *, status: MatchStatus | None = None
    ) -> list[EventMatch]:
        query = select(EventMatch).where(EventMatch.event_id == event_id)
        if status is not None:
            query = query.where(EventMatch.status == status.value)
        query = query.order_by(EventMatch.created_at.asc(), EventMatch.match_id.asc())
        return list(self._session.execute(query).scalars().all())


__all__ = ["MatchRepository"]
