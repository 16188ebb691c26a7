"""Event persistence helpers."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from betchat.domain import EventSpec, EventStatus
from betchat.models import Event, EventKind, EventParticipant, EventPool

from .types import EventRecord


def status_filter(status: EventStatus | str, now: datetime) -> Any:
    """SQL condition selecting events whose derived status is ``status`` at ``now``."""

    status = EventStatus(status)
    not_cancelled = Event.cancelled_at.is_(None)
    if status is EventStatus.CANCELLED:
        return Event.cancelled_at.is_not(None)
    if status is EventStatus.SCHEDULED:
        return and_(not_cancelled, Event.start_time > now)
    if status is EventStatus.LIVE:
        return and_(not_cancelled, Event.start_time <= now, Event.end_time >= now)
    return and_(not_cancelled, Event.end_time < now)


class EventRepository:
    """Encapsulate event rows and their lifecycle bookkeeping columns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_event(
        self,
        spec: EventSpec,
        *,
        creator_id: str,
        max_participants: int,
        kind: EventKind = EventKind.EVENT,
        challenged_id: str | None = None,
    ) -> Event:
        event = Event(
            event_id=uuid4().hex,
            kind=kind.value,
            title=spec.title,
            description=spec.description,
            category=spec.category,
            rules=spec.rules,
            event_type=spec.event_type,
            is_private=spec.is_private,
            start_time=spec.start_time,
            end_time=spec.end_time,
            wager_minor=spec.wager_minor,
            max_participants=max_participants,
            creator_id=creator_id,
            challenged_id=challenged_id,
        )
        self._session.add(event)
        self._session.flush()
        return event

    def mark_cancelled(self, event: Event, *, at: datetime, reason: str | None) -> None:
        event.cancelled_at = at
        event.cancel_reason = reason
        self._session.flush()

    def mark_refunds_completed(self, event_id: str, *, at: datetime) -> None:
        self._session.execute(
            update(Event)
            .where(Event.event_id == event_id, Event.refunds_completed_at.is_(None))
            .values(refunds_completed_at=at)
            .execution_options(synchronize_session=False)
        )

    def mark_settlement_started(self, event: Event, *, outcome: bool, at: datetime) -> None:
        event.settlement_outcome = outcome
        event.settlement_started_at = at
        self._session.flush()

    def mark_settled(self, event_id: str, *, at: datetime) -> None:
        self._session.execute(
            update(Event)
            .where(Event.event_id == event_id, Event.settled_at.is_(None))
            .values(settled_at=at)
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Queries

    def get_event(self, event_id: str) -> Event | None:
        return self._session.get(Event, event_id)

    def lock_event(self, event_id: str) -> Event | None:
        """Load the event row with a write lock held until the transaction ends."""

        query = select(Event).where(Event.event_id == event_id).with_for_update()
        return self._session.execute(query).scalar_one_or_none()

    def list_events(
        self,
        *,
        now: datetime,
        status: EventStatus | str | None = None,
        category: str | None = None,
        kind: EventKind | None = EventKind.EVENT,
        include_private: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[EventRecord], int]:
        filters: list[Any] = []
        if kind is not None:
            filters.append(Event.kind == kind.value)
        if status:
            filters.append(status_filter(status, now))
        if category:
            filters.append(Event.category == category)
        if not include_private:
            filters.append(Event.is_private.is_(False))

        participant_counts = (
            select(
                EventParticipant.event_id.label("event_id"),
                func.count(EventParticipant.participation_id).label("participant_count"),
            )
            .group_by(EventParticipant.event_id)
            .subquery()
        )
        query = (
            select(Event, EventPool, func.coalesce(participant_counts.c.participant_count, 0))
            .outerjoin(EventPool, EventPool.event_id == Event.event_id)
            .outerjoin(participant_counts, participant_counts.c.event_id == Event.event_id)
            .where(*filters)
            .order_by(Event.start_time.asc(), Event.event_id.asc())
            .limit(limit)
            .offset(offset)
        )
        total_query = select(func.count(Event.event_id)).where(*filters)

        records = [
            EventRecord(event=event, pool=pool, participant_count=int(count))
            for event, pool, count in self._session.execute(query).all()
        ]
        total = self._session.execute(total_query).scalar_one()
        return records, total

    def list_challenges_for_user(self, user_id: str) -> list[Event]:
        query = (
            select(Event)
            .where(
                Event.kind == EventKind.CHALLENGE.value,
                or_(Event.creator_id == user_id, Event.challenged_id == user_id),
            )
            .order_by(Event.created_at.desc(), Event.event_id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def events_pending_refunds(
        self, *, limit: int | None = None, event_ids: Sequence[str] | None = None
    ) -> list[str]:
        query = select(Event.event_id).where(
            Event.cancelled_at.is_not(None), Event.refunds_completed_at.is_(None)
        )
        if event_ids:
            query = query.where(Event.event_id.in_(list(event_ids)))
        query = query.order_by(Event.cancelled_at.asc())
        if limit:
            query = query.limit(limit)
        return list(self._session.execute(query).scalars().all())

    def events_pending_payouts(
        self, *, limit: int | None = None, event_ids: Sequence[str] | None = None
    ) -> list[str]:
        query = select(Event.event_id).where(
            Event.settlement_started_at.is_not(None), Event.settled_at.is_(None)
        )
        if event_ids:
            query = query.where(Event.event_id.in_(list(event_ids)))
        query = query.order_by(Event.settlement_started_at.asc())
        if limit:
            query = query.limit(limit)
        return list(self._session.execute(query).scalars().all())

    def count_awaiting_outcome(
        self, *, now: datetime, event_ids: Sequence[str] | None = None
    ) -> int:
        query = select(func.count(Event.event_id)).where(
            status_filter(EventStatus.ENDED, now),
            Event.settlement_started_at.is_(None),
        )
        if event_ids:
            query = query.where(Event.event_id.in_(list(event_ids)))
        return int(self._session.execute(query).scalar_one())


__all__ = ["EventRepository", "status_filter"]
