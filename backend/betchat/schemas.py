from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .domain import (
    CancellationSummary,
    MatchView,
    ParticipationView,
    SettlementSummary,
    StakeReceipt,
    as_utc,
    from_minor,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _amount(value: int | None) -> float | None:
    if value is None:
        return None
    return float(from_minor(value))


# ----------------------------------------------------------------------
# Requests


class EventCreate(ApiModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category: str | None = None
    start_time: datetime
    end_time: datetime
    wager_amount: Decimal
    max_participants: int | None = None
    is_private: bool = False
    rules: str | None = None
    event_type: str | None = Field(default=None, alias="type")

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_time(cls, value: datetime) -> datetime:
        return as_utc(value)


class JoinRequest(ApiModel):
    prediction: bool
    wager_amount: Decimal | None = None


class CancelRequest(ApiModel):
    reason: str | None = None


class SettleRequest(ApiModel):
    winning_outcome: bool


class ChallengeCreate(ApiModel):
    challenged_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category: str | None = None
    wager_amount: Decimal
    due_date: datetime

    @field_validator("due_date")
    @classmethod
    def _normalize_due_date(cls, value: datetime) -> datetime:
        return as_utc(value)


class ChallengeSettleRequest(ApiModel):
    winner_id: str = Field(min_length=1)


# ----------------------------------------------------------------------
# Responses


class Pool(ApiModel):
    total_amount: float
    yes_amount: float
    no_amount: float
    yes_participants: int = 0
    no_participants: int = 0
    yes_odds: float
    no_odds: float

    @classmethod
    def from_view(cls, view: Any) -> "Pool":
        return cls(
            total_amount=_amount(view.snapshot.total_minor),
            yes_amount=_amount(view.snapshot.yes_minor),
            no_amount=_amount(view.snapshot.no_minor),
            yes_participants=view.counts.yes,
            no_participants=view.counts.no,
            yes_odds=float(view.yes_odds),
            no_odds=float(view.no_odds),
        )


class Event(ApiModel):
    id: str
    title: str
    description: str | None = None
    category: str | None = None
    rules: str | None = None
    event_type: str | None = Field(default=None, alias="type")
    is_private: bool = False
    start_time: datetime
    end_time: datetime
    wager_amount: float
    max_participants: int
    creator_id: str
    status: str
    participant_count: int = 0
    total_amount: float = 0.0
    cancelled_at: datetime | None = None
    settled_at: datetime | None = None
    winning_outcome: bool | None = None
    created_at: datetime | None = None

    @classmethod
    def from_record(
        cls,
        event: Any,
        *,
        status: str,
        participant_count: int = 0,
        total_minor: int = 0,
    ) -> "Event":
        return cls(
            id=event.event_id,
            title=event.title,
            description=event.description,
            category=event.category,
            rules=event.rules,
            event_type=event.event_type,
            is_private=bool(event.is_private),
            start_time=as_utc(event.start_time),
            end_time=as_utc(event.end_time),
            wager_amount=_amount(event.wager_minor),
            max_participants=event.max_participants,
            creator_id=event.creator_id,
            status=status,
            participant_count=participant_count,
            total_amount=_amount(total_minor),
            cancelled_at=as_utc(event.cancelled_at) if event.cancelled_at else None,
            settled_at=as_utc(event.settled_at) if event.settled_at else None,
            winning_outcome=event.settlement_outcome,
            created_at=as_utc(event.created_at) if event.created_at else None,
        )


class EventList(ApiModel):
    total: int
    items: list[Event]


class Participant(ApiModel):
    id: int
    event_id: str
    user_id: str
    prediction: bool
    amount: float
    joined_at: datetime
    odds_at_join: float | None = None
    payout: float | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None

    @classmethod
    def from_view(cls, view: ParticipationView) -> "Participant":
        return cls(
            id=view.participation_id,
            event_id=view.event_id,
            user_id=view.user_id,
            prediction=view.prediction,
            amount=_amount(view.wager_minor),
            joined_at=view.joined_at,
            odds_at_join=float(view.odds_at_join) if view.odds_at_join is not None else None,
            payout=_amount(view.payout_minor),
            paid_at=view.paid_at,
            refunded_at=view.refunded_at,
        )


class ParticipationStatus(ApiModel):
    has_joined: bool
    prediction: bool | None = None
    amount: float | None = None
    joined_at: datetime | None = None
    odds_at_join: float | None = None

    @classmethod
    def from_view(cls, view: ParticipationView | None) -> "ParticipationStatus":
        if view is None:
            return cls(has_joined=False)
        return cls(
            has_joined=True,
            prediction=view.prediction,
            amount=_amount(view.wager_minor),
            joined_at=view.joined_at,
            odds_at_join=float(view.odds_at_join) if view.odds_at_join is not None else None,
        )


class Match(ApiModel):
    id: int
    event_id: str
    user_id: str
    opponent_id: str
    prediction: bool
    amount: float
    opponent_amount: float
    status: str
    winner_id: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_view(cls, view: MatchView) -> "Match":
        return cls(
            id=view.match_id,
            event_id=view.event_id,
            user_id=view.user_id,
            opponent_id=view.opponent_id,
            prediction=view.prediction,
            amount=_amount(view.amount_minor),
            opponent_amount=_amount(view.opponent_amount_minor),
            status=view.status,
            winner_id=view.winner_id,
            created_at=view.created_at,
            completed_at=view.completed_at,
        )


class JoinResponse(ApiModel):
    message: str
    participation: Participant
    pool: dict[str, float]
    yes_odds: float
    no_odds: float
    matched: bool = False
    matched_with: str | None = None

    @classmethod
    def from_receipt(cls, receipt: StakeReceipt) -> "JoinResponse":
        return cls(
            message="Successfully joined event",
            participation=Participant.from_view(receipt.participation),
            pool={
                "totalAmount": _amount(receipt.pool.total_minor),
                "yesAmount": _amount(receipt.pool.yes_minor),
                "noAmount": _amount(receipt.pool.no_minor),
            },
            yes_odds=float(receipt.yes_odds),
            no_odds=float(receipt.no_odds),
            matched=receipt.match is not None,
            matched_with=receipt.match.opponent_id if receipt.match else None,
        )


class Settlement(ApiModel):
    event_id: str
    winning_outcome: bool
    total_amount: float
    winners: int
    losers: int
    paid: int
    pending: int
    paid_out: float
    completed: bool

    @classmethod
    def from_summary(cls, summary: SettlementSummary) -> "Settlement":
        return cls(
            event_id=summary.event_id,
            winning_outcome=summary.winning_outcome,
            total_amount=_amount(summary.total_pool_minor),
            winners=summary.winners,
            losers=summary.losers,
            paid=summary.paid,
            pending=summary.pending,
            paid_out=_amount(summary.paid_out_minor),
            completed=summary.completed,
        )


class Cancellation(ApiModel):
    event_id: str
    participants: int
    refunded: int
    pending: int
    refunded_amount: float
    completed: bool

    @classmethod
    def from_summary(cls, summary: CancellationSummary) -> "Cancellation":
        return cls(
            event_id=summary.event_id,
            participants=summary.participants,
            refunded=summary.refunded,
            pending=summary.pending,
            refunded_amount=_amount(summary.refunded_minor),
            completed=summary.completed,
        )


class Challenge(ApiModel):
    id: str
    title: str
    description: str | None = None
    category: str | None = None
    challenger_id: str
    challenged_id: str | None = None
    wager_amount: float
    due_date: datetime
    status: str
    escrow_status: str
    winner_id: str | None = None
    created_at: datetime | None = None
    participants: list[Participant] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: Any) -> "Challenge":
        event = view.event
        return cls(
            id=event.event_id,
            title=event.title,
            description=event.description,
            category=event.category,
            challenger_id=event.creator_id,
            challenged_id=event.challenged_id,
            wager_amount=_amount(event.wager_minor),
            due_date=as_utc(event.end_time),
            status=view.status.value,
            escrow_status=view.escrow_status.value,
            winner_id=view.winner_id,
            created_at=as_utc(event.created_at) if event.created_at else None,
            participants=[Participant.from_view(item) for item in view.participants],
        )


class ChallengeList(ApiModel):
    total: int
    items: list[Challenge]


class ErrorResponse(BaseModel):
    message: str
    code: str
