"""Peer-to-peer challenges modelled as two-party events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from betchat.core.errors import (
    ChallengeNotFound,
    InvalidTransition,
    NotPermitted,
    ValidationFailed,
)
from betchat.db import session_scope
from betchat.domain import (
    CancellationSummary,
    ChallengeStatus,
    EscrowStatus,
    EventSpec,
    ParticipationView,
    SettlementSummary,
    to_minor,
)
from betchat.models import Event, EventKind
from betchat.realtime import challenge_room
from betchat.repositories import EventRepository, ParticipationRepository

from .lifecycle_service import EventLifecycleManager
from .pool_service import to_participation_view
from .stake_service import StakeOrchestrator

DECLINED_REASON = "declined"
ESCROW_FAILED_REASON = "escrow_failed"
CHALLENGE_CATEGORY = "challenge"


@dataclass(slots=True)
class ChallengeView:
    event: Event
    status: ChallengeStatus
    escrow_status: EscrowStatus
    participants: list[ParticipationView]

    @property
    def challenge_id(self) -> str:
        return self.event.event_id

    @property
    def winner_id(self) -> str | None:
        if self.event.settlement_outcome is None:
            return None
        return self.event.creator_id if self.event.settlement_outcome else self.event.challenged_id


def challenge_status(event: Event, participant_count: int) -> ChallengeStatus:
    if event.cancelled_at is not None:
        if event.cancel_reason == DECLINED_REASON:
            return ChallengeStatus.DECLINED
        return ChallengeStatus.CANCELLED
    if event.settlement_started_at is not None:
        return ChallengeStatus.COMPLETED
    if participant_count >= 2:
        return ChallengeStatus.ACTIVE
    return ChallengeStatus.PENDING


def escrow_status(event: Event, participant_count: int) -> EscrowStatus:
    if participant_count == 0:
        return EscrowStatus.NONE
    if event.cancelled_at is not None:
        return EscrowStatus.REFUNDED
    if event.settlement_started_at is not None:
        return EscrowStatus.RELEASED
    return EscrowStatus.LOCKED


class ChallengeService:
    """Two-party wagers sharing the event pool, stake and settlement machinery.

    The challenger backs ``True`` ("challenger wins"), the challenged user backs
    ``False`` with an equal stake, and settlement hands the whole pool to the
    winner.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        stakes: StakeOrchestrator,
        lifecycle: EventLifecycleManager,
    ) -> None:
        self._session_factory = session_factory
        self.stakes = stakes
        self.lifecycle = lifecycle

    # ------------------------------------------------------------------
    # Mutations

    def create(
        self,
        *,
        challenger_id: str,
        challenged_id: str,
        title: str,
        wager_amount: Decimal | int | str,
        due_date: datetime,
        description: str | None = None,
        category: str | None = None,
    ) -> ChallengeView:
        if challenger_id == challenged_id:
            raise ValidationFailed("You cannot challenge yourself")

        now = self.lifecycle.now()
        spec = EventSpec(
            title=title,
            description=description,
            category=category or CHALLENGE_CATEGORY,
            start_time=now,
            end_time=due_date,
            wager_minor=to_minor(wager_amount),
            is_private=True,
            max_participants=2,
        )
        event = self.lifecycle.create(
            spec,
            challenger_id,
            kind=EventKind.CHALLENGE,
            challenged_id=challenged_id,
            require_future_start=False,
        )
        try:
            self.stakes.place_stake(event.event_id, challenger_id, True)
        except Exception:
            logger.warning(
                "Escrow failed for challenge={} challenger={}; cancelling", event.event_id, challenger_id
            )
            try:
                self.lifecycle.cancel(event.event_id, reason=ESCROW_FAILED_REASON)
            except Exception:
                logger.exception("Could not cancel challenge={} after escrow failure", event.event_id)
            raise

        logger.info(
            "Challenge created challenge={} challenger={} challenged={}",
            event.event_id,
            challenger_id,
            challenged_id,
        )
        return self.get(event.event_id)

    def accept(self, challenge_id: str, user_id: str) -> ChallengeView:
        event = self._load(challenge_id)
        if user_id != event.challenged_id:
            raise NotPermitted("Only the challenged user can accept this challenge")
        if event.cancelled_at is not None:
            raise InvalidTransition("Challenge is no longer open")

        receipt = self.stakes.place_stake(challenge_id, user_id, False)
        try:
            self.stakes.broadcaster.publish(
                challenge_room(challenge_id),
                "challenge_accepted",
                {"challengeId": challenge_id, "userId": user_id},
            )
        except Exception:
            logger.warning("Broadcast challenge_accepted for {} failed", challenge_id)
        logger.info(
            "Challenge accepted challenge={} by={} pool_total={}",
            challenge_id,
            user_id,
            receipt.pool.total_minor,
        )
        return self.get(challenge_id)

    def decline(self, challenge_id: str, user_id: str) -> ChallengeView:
        event = self._load(challenge_id)
        if user_id != event.challenged_id:
            raise NotPermitted("Only the challenged user can decline this challenge")
        view = self.get(challenge_id)
        if view.status is not ChallengeStatus.PENDING:
            raise InvalidTransition(f"Cannot decline a challenge that is {view.status.value}")
        self.lifecycle.cancel(challenge_id, reason=DECLINED_REASON)
        return self.get(challenge_id)

    def cancel(self, challenge_id: str, user_id: str) -> CancellationSummary:
        event = self._load(challenge_id)
        if user_id != event.creator_id:
            raise NotPermitted("Only the challenger can withdraw this challenge")
        view = self.get(challenge_id)
        if view.status is not ChallengeStatus.PENDING:
            raise InvalidTransition(f"Cannot withdraw a challenge that is {view.status.value}")
        return self.lifecycle.cancel(challenge_id, reason="withdrawn")

    def settle(self, challenge_id: str, winner_id: str, *, requested_by: str) -> SettlementSummary:
        event = self._load(challenge_id)
        parties = (event.creator_id, event.challenged_id)
        if requested_by not in parties:
            raise NotPermitted("Only the two parties can settle this challenge")
        if winner_id not in parties:
            raise ValidationFailed("Winner must be one of the two parties")
        view = self.get(challenge_id)
        if len(view.participants) < 2:
            raise InvalidTransition("Challenge has not been accepted")
        return self.lifecycle.settle(challenge_id, winner_id == event.creator_id)

    # ------------------------------------------------------------------
    # Queries

    def get(self, challenge_id: str) -> ChallengeView:
        with session_scope(self._session_factory) as session:
            event = self._load(challenge_id, session=session)
            participants = [
                to_participation_view(record)
                for record in ParticipationRepository(session).list_for_event(challenge_id)
            ]
        return ChallengeView(
            event=event,
            status=challenge_status(event, len(participants)),
            escrow_status=escrow_status(event, len(participants)),
            participants=participants,
        )

    def list_for_user(self, user_id: str) -> list[ChallengeView]:
        with session_scope(self._session_factory) as session:
            events = EventRepository(session).list_challenges_for_user(user_id)
            participations = ParticipationRepository(session)
            views = []
            for event in events:
                participants = [
                    to_participation_view(record)
                    for record in participations.list_for_event(event.event_id)
                ]
                views.append(
                    ChallengeView(
                        event=event,
                        status=challenge_status(event, len(participants)),
                        escrow_status=escrow_status(event, len(participants)),
                        participants=participants,
                    )
                )
        return views

    def _load(self, challenge_id: str, *, session: Session | None = None) -> Event:
        if session is None:
            with session_scope(self._session_factory) as own_session:
                return self._load(challenge_id, session=own_session)
        event = EventRepository(session).get_event(challenge_id)
        if event is None or event.kind != EventKind.CHALLENGE.value:
            raise ChallengeNotFound()
        return event


__all__ = ["ChallengeService", "ChallengeView", "challenge_status", "escrow_status"]
