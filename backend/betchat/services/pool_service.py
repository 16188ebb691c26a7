"""Read-side conveniences over pools and participations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from betchat.core.config import Settings, get_settings
from betchat.core.errors import EventNotFound
from betchat.domain import (
    EventStatus,
    MatchView,
    ParticipationView,
    PoolSnapshot,
    as_utc,
    derive_status,
)
from betchat.models import Event, EventMatch, EventParticipant
from betchat.repositories import (
    EventRepository,
    MatchRepository,
    ParticipationRepository,
    PoolRepository,
    SideCounts,
)

from .odds import odds_options, quote_both


@dataclass(slots=True)
class PoolView:
    snapshot: PoolSnapshot
    counts: SideCounts
    yes_odds: Decimal
    no_odds: Decimal


@dataclass(slots=True)
class EventView:
    event: Event
    status: EventStatus
    pool: PoolSnapshot
    participant_count: int


def to_participation_view(record: EventParticipant) -> ParticipationView:
    return ParticipationView(
        participation_id=record.participation_id,
        event_id=record.event_id,
        user_id=record.user_id,
        prediction=bool(record.prediction),
        wager_minor=int(record.wager_minor),
        joined_at=as_utc(record.joined_at),
        odds_at_join=Decimal(str(record.odds_at_join)) if record.odds_at_join is not None else None,
        payout_minor=record.payout_minor,
        paid_at=as_utc(record.paid_at) if record.paid_at else None,
        refunded_at=as_utc(record.refunded_at) if record.refunded_at else None,
    )


def to_match_view(record: EventMatch) -> MatchView:
    return MatchView(
        match_id=record.match_id,
        event_id=record.event_id,
        user_id=record.user_id,
        opponent_id=record.opponent_id,
        prediction=bool(record.prediction),
        amount_minor=int(record.amount_minor),
        opponent_amount_minor=int(record.opponent_amount_minor),
        status=record.status,
        created_at=as_utc(record.created_at),
        winner_id=record.winner_id,
        completed_at=as_utc(record.completed_at) if record.completed_at else None,
    )


def event_status(event: Event, now: datetime | None = None) -> EventStatus:
    return derive_status(
        start_time=event.start_time,
        end_time=event.end_time,
        cancelled_at=event.cancelled_at,
        now=now or datetime.now(timezone.utc),
    )


class PoolService:
    """Read-only facade over pool state used by the API and the registry."""

    def __init__(self, session: Session, settings: Settings | None = None):
        self._session = session
        self._settings = settings or get_settings()
        self._events = EventRepository(session)
        self._pools = PoolRepository(session)
        self._participations = ParticipationRepository(session)
        self._matches = MatchRepository(session)

    def get_event(self, event_id: str, *, now: datetime | None = None) -> EventView:
        event = self._events.get_event(event_id)
        if event is None:
            raise EventNotFound()
        return EventView(
            event=event,
            status=event_status(event, now),
            pool=self._pools.read(event_id),
            participant_count=self._participations.count(event_id),
        )

    def pool_view(self, event_id: str) -> PoolView:
        if self._events.get_event(event_id) is None:
            raise EventNotFound()
        snapshot = self._pools.read(event_id)
        yes_odds, no_odds = quote_both(snapshot, **odds_options(self._settings))
        return PoolView(
            snapshot=snapshot,
            counts=self._participations.side_counts(event_id),
            yes_odds=yes_odds,
            no_odds=no_odds,
        )

    def get_participation(self, event_id: str, user_id: str) -> ParticipationView | None:
        if self._events.get_event(event_id) is None:
            raise EventNotFound()
        record = self._participations.get(event_id, user_id)
        return to_participation_view(record) if record else None

    def list_participants(self, event_id: str) -> list[ParticipationView]:
        if self._events.get_event(event_id) is None:
            raise EventNotFound()
        return [
            to_participation_view(record)
            for record in self._participations.list_for_event(event_id)
        ]

    def list_matches(self, event_id: str) -> list[MatchView]:
        if self._events.get_event(event_id) is None:
            raise EventNotFound()
        return [to_match_view(record) for record in self._matches.list_for_event(event_id)]

    def participant_counts(self, event_id: str) -> SideCounts:
        return self._participations.side_counts(event_id)
