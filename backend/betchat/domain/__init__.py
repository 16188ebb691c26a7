"""Domain types shared across the wagering services."""

from .models import (
    CancellationSummary,
    ChallengeStatus,
    EscrowStatus,
    EventSpec,
    EventStatus,
    MatchView,
    Outcome,
    ParticipationView,
    PoolSnapshot,
    SettlementSummary,
    StakeReceipt,
)
from .money import MAX_AMOUNT_MINOR, format_amount, from_minor, to_minor
from .status import as_utc, derive_status

__all__ = [
    "CancellationSummary",
    "ChallengeStatus",
    "EscrowStatus",
    "EventSpec",
    "EventStatus",
    "MAX_AMOUNT_MINOR",
    "MatchView",
    "Outcome",
    "ParticipationView",
    "PoolSnapshot",
    "SettlementSummary",
    "StakeReceipt",
    "as_utc",
    "derive_status",
    "format_amount",
    "from_minor",
    "to_minor",
]
