"""Join/stake use case: validation, ledger debit, participation and pool writes."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from betchat.core.config import Settings, get_settings
from betchat.core.errors import (
    AlreadyJoined,
    EventFull,
    EventNotFound,
    EventNotJoinable,
    InsufficientBalance,
    LedgerIntegrityError,
    LedgerUnavailable,
    NotPermitted,
    StakeBelowMinimum,
    ValidationFailed,
)
from betchat.db import SessionLocal, session_scope
from betchat.domain import (
    EventStatus,
    MatchView,
    Outcome,
    ParticipationView,
    PoolSnapshot,
    StakeReceipt,
    format_amount,
    from_minor,
    to_minor,
)
from betchat.ledger import LedgerAdapter, SqlLedger, compensation_reference, stake_reference
from betchat.models import Event, EventKind, EventParticipant
from betchat.realtime import NullBroadcaster, RoomBroadcaster, challenge_room, event_room
from betchat.repositories import EventRepository, ParticipationRepository, PoolRepository, SideCounts

from .match_service import OpponentMatcher
from .odds import odds_options, quote_both
from .pool_service import PoolService, event_status, to_participation_view
from .retry import run_with_retry

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class JoinResult:
    participation: EventParticipant
    pool: PoolSnapshot
    yes_odds: Decimal
    no_odds: Decimal
    ledger_reference: str
    ledger_applied: bool


class ParticipationRegistry:
    """Exactly one participation per (event, user), funded by a ledger debit."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        ledger: LedgerAdapter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self.ledger = ledger or SqlLedger()
        self.settings = settings or get_settings()

    @property
    def min_stake_minor(self) -> int:
        return to_minor(self.settings.min_stake)

    # ------------------------------------------------------------------
    # Mutations

    def join(
        self,
        session: Session,
        event: Event,
        *,
        user_id: str,
        prediction: bool,
        wager_minor: int,
        now: datetime,
    ) -> JoinResult:
        """Register the stake inside ``session``; the caller owns the transaction.

        ``event`` must have been loaded with its row lock held. The ledger debit
        runs last so a non-transactional ledger is only touched once every local
        write has succeeded.
        """

        participations = ParticipationRepository(session)
        pools = PoolRepository(session)

        self._check_joinable(event, now)
        self._check_stake(event, wager_minor)
        if event.kind == EventKind.CHALLENGE.value and user_id not in (
            event.creator_id,
            event.challenged_id,
        ):
            raise NotPermitted("Only the two parties of a challenge can stake on it")
        if participations.get(event.event_id, user_id) is not None:
            raise AlreadyJoined()
        if participations.count(event.event_id) >= event.max_participants:
            raise EventFull()
        if self.ledger.balance(session, user_id) < wager_minor:
            raise InsufficientBalance()

        try:
            participation = participations.insert(
                event_id=event.event_id,
                user_id=user_id,
                prediction=prediction,
                wager_minor=wager_minor,
                joined_at=now,
            )
        except IntegrityError as exc:
            raise AlreadyJoined() from exc

        outcome = Outcome.from_prediction(prediction)
        pools.apply_stake(event.event_id, outcome, wager_minor)
        snapshot = pools.read(event.event_id)
        yes_odds, no_odds = quote_both(snapshot, **odds_options(self.settings))
        participations.record_odds(participation, yes_odds if prediction else no_odds)

        reference = stake_reference(event.event_id, user_id, uuid4().hex[:12])
        applied = self.ledger.debit(
            session,
            user_id,
            wager_minor,
            reference=reference,
            description=f"Stake on {event.title}",
        )
        return JoinResult(
            participation=participation,
            pool=snapshot,
            yes_odds=yes_odds,
            no_odds=no_odds,
            ledger_reference=reference,
            ledger_applied=applied,
        )

    def _check_joinable(self, event: Event, now: datetime) -> None:
        status = event_status(event, now)
        if status not in (EventStatus.SCHEDULED, EventStatus.LIVE):
            raise EventNotJoinable(f"Event is {status.value} and no longer accepts stakes")
        if event.settlement_started_at is not None:
            raise EventNotJoinable("Event is being settled and no longer accepts stakes")

    def _check_stake(self, event: Event, wager_minor: int) -> None:
        if wager_minor < self.min_stake_minor:
            raise StakeBelowMinimum(
                "Minimum bet amount is "
                f"{format_amount(self.min_stake_minor, self.settings.currency_symbol)}"
            )
        if event.kind == EventKind.CHALLENGE.value and wager_minor != event.wager_minor:
            raise ValidationFailed("Challenge stakes must match the agreed wager")

    # ------------------------------------------------------------------
    # Queries

    def get_participation(self, event_id: str, user_id: str) -> ParticipationView | None:
        with session_scope(self._session_factory) as session:
            return PoolService(session, self.settings).get_participation(event_id, user_id)

    def list_participants(self, event_id: str) -> list[ParticipationView]:
        with session_scope(self._session_factory) as session:
            return PoolService(session, self.settings).list_participants(event_id)

    def participant_counts(self, event_id: str) -> SideCounts:
        with session_scope(self._session_factory) as session:
            return PoolService(session, self.settings).participant_counts(event_id)


class StakeOrchestrator:
    """Entry point for placing a stake on an event or challenge."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        ledger: LedgerAdapter | None = None,
        broadcaster: RoomBroadcaster | None = None,
        settings: Settings | None = None,
        clock: Clock = utc_clock,
        matcher: OpponentMatcher | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self.settings = settings or get_settings()
        self.registry = ParticipationRegistry(
            self._session_factory, ledger=ledger, settings=self.settings
        )
        self.ledger = self.registry.ledger
        self.broadcaster = broadcaster or NullBroadcaster()
        self._clock = clock
        self.matcher = matcher or OpponentMatcher(self._session_factory, settings=self.settings)

    def place_stake(
        self,
        event_id: str,
        user_id: str,
        prediction: bool,
        wager_amount: Decimal | int | str | None = None,
    ) -> StakeReceipt:
        """Stake ``wager_amount`` (major units) on ``prediction``.

        Defaults to the event's suggested wager. Not idempotent: a second call
        for the same user and event fails with ``AlreadyJoined``.
        """

        wager_minor = to_minor(wager_amount) if wager_amount is not None else None
        now = self._clock()
        result: JoinResult | None = None
        remote_debit = False
        event_kind = EventKind.EVENT.value

        try:
            with session_scope(self._session_factory) as session:
                event = EventRepository(session).lock_event(event_id)
                if event is None:
                    raise EventNotFound()
                event_kind = event.kind
                amount = wager_minor if wager_minor is not None else int(event.wager_minor)
                try:
                    result = self.registry.join(
                        session,
                        event,
                        user_id=user_id,
                        prediction=prediction,
                        wager_minor=amount,
                        now=now,
                    )
                except LedgerUnavailable:
                    if not self.ledger.transactional:
                        logger.error(
                            "Stake debit outcome unknown event={} user={} amount={}; flagged for reconciliation",
                            event_id,
                            user_id,
                            amount,
                        )
                    raise
                remote_debit = result.ledger_applied and not self.ledger.transactional
                view = to_participation_view(result.participation)
        except IntegrityError as exc:
            self._compensate(result, remote_debit, event_id, user_id, exc)
            raise AlreadyJoined() from exc
        except Exception as exc:
            self._compensate(result, remote_debit, event_id, user_id, exc)
            raise

        receipt = StakeReceipt(
            participation=view,
            pool=result.pool,
            yes_odds=result.yes_odds,
            no_odds=result.no_odds,
        )
        if event_kind == EventKind.EVENT.value:
            receipt.match = self._find_match(view)
        logger.info(
            "Stake placed event={} user={} prediction={} amount={} pool_total={}",
            event_id,
            user_id,
            prediction,
            view.wager_minor,
            receipt.pool.total_minor,
        )
        self._broadcast_stake(receipt, event_kind)
        if receipt.match is not None:
            self._broadcast_match(receipt.match)
        return receipt

    def _find_match(self, view: ParticipationView) -> MatchView | None:
        try:
            return self.matcher.match(view.participation_id)
        except Exception:
            logger.exception(
                "Opponent matching failed event={} user={}; stake stays unmatched",
                view.event_id,
                view.user_id,
            )
            return None

    def _compensate(
        self,
        result: JoinResult | None,
        remote_debit: bool,
        event_id: str,
        user_id: str,
        error: BaseException,
    ) -> None:
        if result is None or not remote_debit:
            return

        amount = int(result.participation.wager_minor)
        logger.error(
            "Stake write failed after remote debit event={} user={} amount={} error={}; reversing debit",
            event_id,
            user_id,
            amount,
            error.__class__.__name__,
        )
        try:
            run_with_retry(
                lambda: self.ledger.credit(
                    None,
                    user_id,
                    amount,
                    reference=compensation_reference(result.ledger_reference),
                    description="Reversal of unregistered stake",
                ),
                attempts=self.settings.payout_retry_attempts,
                backoff=self.settings.payout_retry_backoff_schedule,
                description=f"Stake reversal event={event_id} user={user_id}",
            )
        except Exception as exc:
            logger.critical(
                "Stake reversal failed event={} user={} amount={} debit_reference={}; manual reconciliation required",
                event_id,
                user_id,
                amount,
                result.ledger_reference,
            )
            raise LedgerIntegrityError() from exc

    def _broadcast_stake(self, receipt: StakeReceipt, event_kind: str) -> None:
        participation = receipt.participation
        payload: dict[str, Any] = {
            "eventId": participation.event_id,
            "userId": participation.user_id,
            "prediction": participation.prediction,
            "wagerAmount": float(from_minor(participation.wager_minor)),
            "pool": {
                "totalAmount": float(from_minor(receipt.pool.total_minor)),
                "yesAmount": float(from_minor(receipt.pool.yes_minor)),
                "noAmount": float(from_minor(receipt.pool.no_minor)),
            },
            "yesOdds": float(receipt.yes_odds),
            "noOdds": float(receipt.no_odds),
        }
        rooms = [event_room(participation.event_id)]
        if event_kind == EventKind.CHALLENGE.value:
            rooms.append(challenge_room(participation.event_id))
        for room in rooms:
            for message_type in ("new_participant", "bet_placed"):
                try:
                    self.broadcaster.publish(room, message_type, payload)
                except Exception:
                    logger.warning(
                        "Broadcast {} to {} failed; stake already committed",
                        message_type,
                        room,
                    )

    def _broadcast_match(self, match: MatchView) -> None:
        payload = {
            "eventId": match.event_id,
            "matchId": match.match_id,
            "user1": {
                "id": match.user_id,
                "prediction": match.prediction,
                "wagerAmount": float(from_minor(match.amount_minor)),
            },
            "user2": {
                "id": match.opponent_id,
                "prediction": not match.prediction,
                "wagerAmount": float(from_minor(match.opponent_amount_minor)),
            },
        }
        try:
            self.broadcaster.publish(event_room(match.event_id), "match_found", payload)
        except Exception:
            logger.warning("Broadcast match_found for event {} failed", match.event_id)


__all__ = ["JoinResult", "ParticipationRegistry", "StakeOrchestrator", "utc_clock"]
