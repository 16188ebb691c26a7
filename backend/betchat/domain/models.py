"""Typed domain representations passed between repositories, services and the API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class Outcome(str, Enum):
    YES = "yes"
    NO = "no"

    @classmethod
    def from_prediction(cls, prediction: bool) -> "Outcome":
        return cls.YES if prediction else cls.NO

    @property
    def prediction(self) -> bool:
        return self is Outcome.YES

    @property
    def opposite(self) -> "Outcome":
        return Outcome.NO if self is Outcome.YES else Outcome.YES


class EventStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    CANCELLED = "cancelled"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class EscrowStatus(str, Enum):
    NONE = "none"
    LOCKED = "locked"
    RELEASED = "released"
    REFUNDED = "refunded"


@dataclass(slots=True)
class EventSpec:
    """Validated-on-create description of a new event."""

    title: str
    start_time: datetime
    end_time: datetime
    wager_minor: int
    description: str | None = None
    category: str | None = None
    rules: str | None = None
    event_type: str | None = None
    is_private: bool = False
    max_participants: int | None = None


@dataclass(slots=True, frozen=True)
class PoolSnapshot:
    """Consistent read of a pool; amounts in minor units."""

    event_id: str
    total_minor: int
    yes_minor: int
    no_minor: int

    def side(self, outcome: Outcome) -> int:
        return self.yes_minor if outcome is Outcome.YES else self.no_minor


@dataclass(slots=True)
class ParticipationView:
    participation_id: int
    event_id: str
    user_id: str
    prediction: bool
    wager_minor: int
    joined_at: datetime
    odds_at_join: Decimal | None = None
    payout_minor: int | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None


@dataclass(slots=True)
class MatchView:
    """A stake paired with the opposing stake it was matched against."""

    match_id: int
    event_id: str
    user_id: str
    opponent_id: str
    prediction: bool
    amount_minor: int
    opponent_amount_minor: int
    status: str
    created_at: datetime
    winner_id: str | None = None
    completed_at: datetime | None = None


@dataclass(slots=True)
class StakeReceipt:
    participation: ParticipationView
    pool: PoolSnapshot
    yes_odds: Decimal
    no_odds: Decimal
    match: MatchView | None = None


@dataclass(slots=True)
class SettlementSummary:
    event_id: str
    winning_outcome: bool
    total_pool_minor: int
    winners: int = 0
    losers: int = 0
    paid: int = 0
    pending: int = 0
    paid_out_minor: int = 0
    completed: bool = False
    failures: list[dict[str, object]] = field(default_factory=list)


@dataclass(slots=True)
class CancellationSummary:
    event_id: str
    participants: int = 0
    refunded: int = 0
    pending: int = 0
    refunded_minor: int = 0
    completed: bool = False
    failures: list[dict[str, object]] = field(default_factory=list)
