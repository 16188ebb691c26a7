"""Ledger adapters funding stakes and receiving payouts."""

from __future__ import annotations

from betchat.core.config import Settings, get_settings

from .base import (
    LedgerAdapter,
    compensation_reference,
    payout_reference,
    refund_reference,
    stake_reference,
)
from .http import HttpLedgerClient
from .sql import SqlLedger


def build_ledger(settings: Settings | None = None) -> LedgerAdapter:
    settings = settings or get_settings()
    if settings.ledger_backend == "http":
        return HttpLedgerClient(
            base_url=str(settings.ledger_base_url),
            api_key=settings.ledger_api_key,
            timeout=settings.ledger_timeout_seconds,
        )
    return SqlLedger()


__all__ = [
    "HttpLedgerClient",
    "LedgerAdapter",
    "SqlLedger",
    "build_ledger",
    "compensation_reference",
    "payout_reference",
    "refund_reference",
    "stake_reference",
]
