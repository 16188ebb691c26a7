"""Event creation, cancellation with refunds, and settlement with payouts."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from betchat.core.config import Settings, get_settings
from betchat.core.errors import (
    EventNotFound,
    InvalidTransition,
    LedgerIntegrityError,
    NotPermitted,
    SettlementConflict,
    StakeBelowMinimum,
    ValidationFailed,
)
from betchat.db import SessionLocal, session_scope
from betchat.domain import (
    CancellationSummary,
    EventSpec,
    EventStatus,
    SettlementSummary,
    as_utc,
    format_amount,
    from_minor,
    to_minor,
)
from betchat.ledger import LedgerAdapter, SqlLedger, payout_reference, refund_reference
from betchat.models import Event, EventKind
from betchat.realtime import NullBroadcaster, RoomBroadcaster, challenge_room, event_room
from betchat.repositories import (
    EventRecord,
    EventRepository,
    MatchRepository,
    ParticipationRepository,
    PoolRepository,
)

from .payouts import Stake, allocate_pro_rata
from .pool_service import event_status
from .retry import run_with_retry
from .stake_service import Clock, utc_clock


class EventLifecycleManager:
    """Drive events through creation, cancellation and settlement.

    Status is never stored: it is derived from the clock, the event window and
    the cancel flag. Cancellation and settlement touch each participant in its
    own transaction so one failing ledger call cannot undo the others, and both
    are safe to re-invoke until every participant has been handled.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        ledger: LedgerAdapter | None = None,
        broadcaster: RoomBroadcaster | None = None,
        settings: Settings | None = None,
        clock: Clock = utc_clock,
        sleep=None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self.ledger = ledger or SqlLedger()
        self.broadcaster = broadcaster or NullBroadcaster()
        self.settings = settings or get_settings()
        self._clock = clock
        self._retry_kwargs: dict[str, Any] = {
            "attempts": self.settings.payout_retry_attempts,
            "backoff": self.settings.payout_retry_backoff_schedule,
        }
        if sleep is not None:
            self._retry_kwargs["sleep"] = sleep

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Creation and queries

    def create(
        self,
        spec: EventSpec,
        creator_id: str,
        *,
        kind: EventKind = EventKind.EVENT,
        challenged_id: str | None = None,
        require_future_start: bool = True,
    ) -> Event:
        """Validate ``spec`` and create the event with its zeroed pool in one transaction."""

        now = self.now()
        spec = replace(spec, start_time=as_utc(spec.start_time), end_time=as_utc(spec.end_time))
        max_participants = self._validate_spec(spec, now, require_future_start=require_future_start)

        with session_scope(self._session_factory) as session:
            event = EventRepository(session).create_event(
                spec,
                creator_id=creator_id,
                max_participants=max_participants,
                kind=kind,
                challenged_id=challenged_id,
            )
            PoolRepository(session).initialize(event.event_id)

        logger.info(
            "Event created event={} kind={} creator={} window={}..{}",
            event.event_id,
            kind.value,
            creator_id,
            spec.start_time.isoformat(),
            spec.end_time.isoformat(),
        )
        return event

    def get(self, event_id: str) -> Event:
        with session_scope(self._session_factory) as session:
            event = EventRepository(session).get_event(event_id)
            if event is None:
                raise EventNotFound()
            return event

    def status(self, event: Event, now: datetime | None = None) -> EventStatus:
        return event_status(event, now or self.now())

    def list_events(
        self,
        *,
        status: EventStatus | str | None = None,
        category: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[EventRecord], int]:
        with session_scope(self._session_factory) as session:
            return EventRepository(session).list_events(
                now=self.now(),
                status=status,
                category=category,
                limit=limit,
                offset=offset,
            )

    def _validate_spec(self, spec: EventSpec, now: datetime, *, require_future_start: bool) -> int:
        if not spec.title or not spec.title.strip():
            raise ValidationFailed("Event title is required")
        if require_future_start and spec.start_time <= now:
            raise ValidationFailed("Event start time must be in the future")
        min_duration = timedelta(minutes=self.settings.min_event_duration_minutes)
        if spec.end_time <= spec.start_time + min_duration:
            raise ValidationFailed(
                "Event must end more than "
                f"{self.settings.min_event_duration_minutes} minutes after it starts"
            )
        min_stake_minor = to_minor(self.settings.min_stake)
        if spec.wager_minor < min_stake_minor:
            raise StakeBelowMinimum(
                "Minimum bet amount is "
                f"{format_amount(min_stake_minor, self.settings.currency_symbol)}"
            )
        max_participants = spec.max_participants
        if max_participants is None:
            max_participants = self.settings.default_max_participants
        if not 2 <= max_participants <= self.settings.max_participants_limit:
            raise ValidationFailed(
                f"Max participants must be between 2 and {self.settings.max_participants_limit}"
            )
        return max_participants

    # ------------------------------------------------------------------
    # Cancellation

    def cancel(
        self,
        event_id: str,
        *,
        requested_by: str | None = None,
        reason: str | None = None,
    ) -> CancellationSummary:
        """Cancel a scheduled or live event and refund every stake.

        The cancel flag is committed first so no new stake can arrive while
        refunds run. Calling again on a cancelled event resumes refunds that
        are still outstanding.
        """

        now = self.now()
        with session_scope(self._session_factory) as session:
            events = EventRepository(session)
            event = events.lock_event(event_id)
            if event is None:
                raise EventNotFound()
            if requested_by is not None and requested_by != event.creator_id:
                raise NotPermitted("Only the event creator can cancel it")
            already_cancelled = event.cancelled_at is not None
            if not already_cancelled:
                status = event_status(event, now)
                if status not in (EventStatus.SCHEDULED, EventStatus.LIVE):
                    raise InvalidTransition(f"Cannot cancel an event that is {status.value}")
                if event.settlement_started_at is not None:
                    raise InvalidTransition("Cannot cancel an event that is being settled")
                events.mark_cancelled(event, at=now, reason=reason)
                MatchRepository(session).cancel_for_event(event_id, at=now)
            event_kind = event.kind

        if not already_cancelled:
            logger.info("Event cancelled event={} by={} reason={}", event_id, requested_by, reason)
        summary = self.resume_refunds(event_id)
        if not already_cancelled:
            self._publish(
                event_id,
                event_kind,
                "event_cancelled",
                {
                    "eventId": event_id,
                    "reason": reason,
                    "refunded": summary.refunded,
                    "pending": summary.pending,
                },
            )
        return summary

    def resume_refunds(self, event_id: str) -> CancellationSummary:
        with session_scope(self._session_factory) as session:
            event = EventRepository(session).get_event(event_id)
            if event is None:
                raise EventNotFound()
            if event.cancelled_at is None:
                raise InvalidTransition("Event is not cancelled")
            participations = ParticipationRepository(session)
            total = participations.count(event_id)
            pending = [
                (record.participation_id, record.user_id, int(record.wager_minor))
                for record in participations.unrefunded(event_id)
            ]
            title = event.title

        summary = CancellationSummary(event_id=event_id, participants=total)
        summary.refunded = total - len(pending)
        for participation_id, user_id, amount in pending:
            try:
                run_with_retry(
                    lambda: self._refund_one(participation_id, user_id, amount, title),
                    description=f"Refund participation={participation_id} event={event_id}",
                    **self._retry_kwargs,
                )
            except Exception as exc:
                logger.exception(
                    "Refund deferred participation={} user={} event={}", participation_id, user_id, event_id
                )
                summary.pending += 1
                summary.failures.append(
                    {"participation_id": participation_id, "user_id": user_id, "error": str(exc)}
                )
                continue
            summary.refunded += 1
            summary.refunded_minor += amount

        if summary.pending == 0:
            with session_scope(self._session_factory) as session:
                EventRepository(session).mark_refunds_completed(event_id, at=self.now())
            summary.completed = True
        logger.info(
            "Refunds processed event={} refunded={} pending={} amount={}",
            event_id,
            summary.refunded,
            summary.pending,
            summary.refunded_minor,
        )
        return summary

    def _refund_one(self, participation_id: int, user_id: str, amount: int, title: str) -> None:
        with session_scope(self._session_factory) as session:
            participations = ParticipationRepository(session)
            if not participations.mark_refunded(participation_id, at=self.now()):
                return
            self.ledger.credit(
                session,
                user_id,
                amount,
                reference=refund_reference(participation_id),
                description=f"Refund for cancelled event {title}",
            )

    # ------------------------------------------------------------------
    # Settlement

    def settle(
        self,
        event_id: str,
        winning_outcome: bool,
        *,
        requested_by: str | None = None,
    ) -> SettlementSummary:
        """Settle the event for ``winning_outcome`` and pay winners pro-rata.

        The first call freezes the pool and records every participant's payout;
        later calls with the same outcome only pay whoever is still unpaid.
        """

        now = self.now()
        with session_scope(self._session_factory) as session:
            events = EventRepository(session)
            event = events.lock_event(event_id)
            if event is None:
                raise EventNotFound()
            if requested_by is not None and requested_by != event.creator_id:
                raise NotPermitted("Only the event creator can settle it")

            if event.settlement_started_at is None:
                status = event_status(event, now)
                if status not in (EventStatus.LIVE, EventStatus.ENDED):
                    raise InvalidTransition(f"Cannot settle an event that is {status.value}")
                self._freeze(session, event, winning_outcome, now)
                logger.info("Settlement started event={} outcome={}", event_id, winning_outcome)
            elif bool(event.settlement_outcome) != bool(winning_outcome):
                raise SettlementConflict(
                    "Event is already being settled for the other outcome"
                )

        return self.resume_payouts(event_id)

    def _freeze(self, session: Session, event: Event, winning_outcome: bool, now: datetime) -> None:
        participations = ParticipationRepository(session)
        records = participations.list_for_event(event.event_id)
        payouts = allocate_pro_rata(
            [
                Stake(
                    participation_id=record.participation_id,
                    prediction=bool(record.prediction),
                    wager_minor=int(record.wager_minor),
                )
                for record in records
            ],
            winning_outcome,
        )
        snapshot = PoolRepository(session).read(event.event_id)
        if sum(payouts.values()) != snapshot.total_minor:
            logger.critical(
                "Pool total {} does not match recorded stakes {} for event {}; settlement refused",
                snapshot.total_minor,
                sum(record.wager_minor for record in records),
                event.event_id,
            )
            raise LedgerIntegrityError("Pool does not match recorded stakes")
        participations.assign_payouts(payouts)
        MatchRepository(session).complete_for_event(event.event_id, winning_outcome, at=now)
        EventRepository(session).mark_settlement_started(event, outcome=winning_outcome, at=now)

    def resume_payouts(self, event_id: str) -> SettlementSummary:
        with session_scope(self._session_factory) as session:
            event = EventRepository(session).get_event(event_id)
            if event is None:
                raise EventNotFound()
            if event.settlement_started_at is None:
                raise InvalidTransition("Event settlement has not started")
            outcome = bool(event.settlement_outcome)
            title = event.title
            event_kind = event.kind
            already_settled = event.settled_at is not None
            participations = ParticipationRepository(session)
            records = participations.list_for_event(event_id)
            pending = [
                (record.participation_id, record.user_id, int(record.payout_minor or 0))
                for record in participations.unpaid_winners(event_id)
            ]
            pool_total = PoolRepository(session).read(event_id).total_minor

        summary = SettlementSummary(
            event_id=event_id,
            winning_outcome=outcome,
            total_pool_minor=pool_total,
        )
        summary.winners = sum(1 for record in records if (record.payout_minor or 0) > 0)
        summary.losers = len(records) - summary.winners
        summary.paid = summary.winners - len(pending)
        summary.paid_out_minor = sum(
            int(record.payout_minor or 0) for record in records if record.paid_at is not None
        )

        for participation_id, user_id, amount in pending:
            try:
                run_with_retry(
                    lambda: self._pay_one(participation_id, user_id, amount, title),
                    description=f"Payout participation={participation_id} event={event_id}",
                    **self._retry_kwargs,
                )
            except Exception as exc:
                logger.exception(
                    "Payout deferred participation={} user={} event={}", participation_id, user_id, event_id
                )
                summary.pending += 1
                summary.failures.append(
                    {"participation_id": participation_id, "user_id": user_id, "error": str(exc)}
                )
                continue
            summary.paid += 1
            summary.paid_out_minor += amount

        if summary.pending == 0:
            with session_scope(self._session_factory) as session:
                EventRepository(session).mark_settled(event_id, at=self.now())
            summary.completed = True
            if not already_settled:
                self._publish(
                    event_id,
                    event_kind,
                    "event_ended",
                    {
                        "eventId": event_id,
                        "winningOutcome": outcome,
                        "totalAmount": float(from_minor(pool_total)),
                        "winners": summary.winners,
                        "paidOut": float(from_minor(summary.paid_out_minor)),
                    },
                )
        logger.info(
            "Payouts processed event={} paid={} pending={} amount={}",
            event_id,
            summary.paid,
            summary.pending,
            summary.paid_out_minor,
        )
        return summary

    def _pay_one(self, participation_id: int, user_id: str, amount: int, title: str) -> None:
        with session_scope(self._session_factory) as session:
            participations = ParticipationRepository(session)
            if not participations.mark_paid(participation_id, at=self.now()):
                return
            self.ledger.credit(
                session,
                user_id,
                amount,
                reference=payout_reference(participation_id),
                description=f"Winnings for {title}",
            )

    def _publish(self, event_id: str, event_kind: str, message_type: str, data: dict[str, Any]) -> None:
        rooms = [event_room(event_id)]
        if event_kind == EventKind.CHALLENGE.value:
            rooms.append(challenge_room(event_id))
        for room in rooms:
            try:
                self.broadcaster.publish(room, message_type, data)
            except Exception:
                logger.warning("Broadcast {} to {} failed", message_type, room)


__all__ = ["EventLifecycleManager"]
