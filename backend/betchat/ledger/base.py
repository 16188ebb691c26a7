"""Contract for the balance store that funds stakes and receives payouts."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy.orm import Session


class LedgerAdapter(Protocol):
    """Atomic debit/credit primitives keyed by a business reference.

    ``reference`` identifies the business effect (``stake:<event>:<user>:<attempt>``,
    ``payout:<participation>``, ``refund:<participation>``). Applying the same
    reference twice for a user is a no-op that returns ``False``.

    ``transactional`` adapters apply their effects inside ``session`` so they
    commit or roll back with the pool writes. Non-transactional adapters apply
    effects immediately and callers must compensate on failure.
    """

    name: str
    transactional: bool

    def balance(self, session: Session, user_id: str) -> int:
        """Return the spendable balance in minor units."""

    def debit(
        self,
        session: Session,
        user_id: str,
        amount_minor: int,
        *,
        reference: str,
        description: str | None = None,
    ) -> bool:
        """Debit or raise ``InsufficientBalance``; never leaves a negative balance."""

    def credit(
        self,
        session: Session,
        user_id: str,
        amount_minor: int,
        *,
        reference: str,
        description: str | None = None,
    ) -> bool:
        """Credit the account."""


def stake_reference(event_id: str, user_id: str, attempt: str) -> str:
    return f"stake:{event_id}:{user_id}:{attempt}"


def payout_reference(participation_id: int) -> str:
    return f"payout:{participation_id}"


def refund_reference(participation_id: int) -> str:
    return f"refund:{participation_id}"


def compensation_reference(debit_reference: str) -> str:
    return f"reversal:{debit_reference}"
