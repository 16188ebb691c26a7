"""Error taxonomy shared by the wagering services and the HTTP layer.

Every error carries a stable ``code`` and the HTTP status the API renders it
with, so services raise domain errors and never build HTTP responses.
"""

from __future__ import annotations


class BetChatError(Exception):
    """Base class for all expected wagering failures."""

    code = "betchat_error"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()

    @classmethod
    def default_message(cls) -> str:
        return cls.__name__

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "code": self.code}


# ----------------------------------------------------------------------
# Validation


class ValidationFailed(BetChatError):
    code = "validation_failed"
    status_code = 422


class InvalidAmount(ValidationFailed):
    code = "invalid_amount"


class StakeBelowMinimum(ValidationFailed):
    code = "stake_below_minimum"


# ----------------------------------------------------------------------
# Not found


class EventNotFound(BetChatError):
    code = "event_not_found"
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "Event not found"


class PoolNotFound(BetChatError):
    code = "pool_not_found"
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "Event pool not found"


class ChallengeNotFound(BetChatError):
    code = "challenge_not_found"
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "Challenge not found"


class AccountNotFound(BetChatError):
    code = "account_not_found"
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "User not found"


# ----------------------------------------------------------------------
# Conflicts


class AlreadyJoined(BetChatError):
    code = "already_joined"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "Already joined this event"


class EventNotJoinable(BetChatError):
    code = "event_not_joinable"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "Event is not open for staking"


class EventFull(EventNotJoinable):
    code = "event_full"

    @classmethod
    def default_message(cls) -> str:
        return "Event has reached its participant limit"


class InvalidTransition(BetChatError):
    code = "invalid_transition"
    status_code = 409


class SettlementConflict(InvalidTransition):
    code = "settlement_conflict"


# ----------------------------------------------------------------------
# Authorization, resources, transport and integrity


class NotPermitted(BetChatError):
    code = "not_permitted"
    status_code = 403

    @classmethod
    def default_message(cls) -> str:
        return "Not permitted"


class InsufficientBalance(BetChatError):
    code = "insufficient_balance"
    status_code = 400

    @classmethod
    def default_message(cls) -> str:
        return "Insufficient balance"


class LedgerUnavailable(BetChatError):
    code = "ledger_unavailable"
    status_code = 503

    @classmethod
    def default_message(cls) -> str:
        return "Ledger service unavailable"


class LedgerIntegrityError(BetChatError):
    """Raised when a ledger effect could not be reconciled with the pool.

    Requires operator attention; the anomaly is logged before this is raised.
    """

    code = "ledger_integrity_error"
    status_code = 500

    @classmethod
    def default_message(cls) -> str:
        return "Stake could not be completed; the operation has been flagged for reconciliation"


__all__ = [
    "AccountNotFound",
    "AlreadyJoined",
    "BetChatError",
    "ChallengeNotFound",
    "EventFull",
    "EventNotFound",
    "EventNotJoinable",
    "InsufficientBalance",
    "InvalidAmount",
    "InvalidTransition",
    "LedgerIntegrityError",
    "LedgerUnavailable",
    "NotPermitted",
    "PoolNotFound",
    "SettlementConflict",
    "StakeBelowMinimum",
    "ValidationFailed",
]
