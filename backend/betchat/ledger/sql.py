"""Ledger kept in the same database as the pools."""

from __future__ import annotations

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from betchat.core.errors import AccountNotFound, InsufficientBalance, InvalidAmount
from betchat.models import Account, LedgerEntry, LedgerEntryKind, utcnow


class SqlLedger:
    """Balances in the ``accounts`` table, journaled in ``ledger_entries``."""

    name = "sql"
    transactional = True

    # ------------------------------------------------------------------
    # Mutations

    def open_account(
        self,
        session: Session,
        user_id: str,
        *,
        username: str | None = None,
    ) -> Account:
        account = session.get(Account, user_id)
        if account is None:
            account = Account(user_id=user_id, username=username, available_minor=0)
            session.add(account)
            session.flush()
        elif username and account.username != username:
            account.username = username
        return account

    def debit(
        self,
        session: Session,
        user_id: str,
        amount_minor: int,
        *,
        reference: str,
        description: str | None = None,
    ) -> bool:
        if amount_minor <= 0:
            raise InvalidAmount("Debit amount must be positive")
        if self._entry_exists(session, user_id, reference):
            logger.info("Ledger debit already applied user={} reference={}", user_id, reference)
            return False

        result = session.execute(
            update(Account)
            .where(Account.user_id == user_id, Account.available_minor >= amount_minor)
            .values(
                available_minor=Account.available_minor - amount_minor,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if not self._account_exists(session, user_id):
                raise AccountNotFound()
            raise InsufficientBalance()

        self._journal(session, user_id, LedgerEntryKind.DEBIT, amount_minor, reference, description)
        return True

    def credit(
        self,
        session: Session,
        user_id: str,
        amount_minor: int,
        *,
        reference: str,
        description: str | None = None,
    ) -> bool:
        if amount_minor <= 0:
            raise InvalidAmount("Credit amount must be positive")
        if self._entry_exists(session, user_id, reference):
            logger.info("Ledger credit already applied user={} reference={}", user_id, reference)
            return False

        result = session.execute(
            update(Account)
            .where(Account.user_id == user_id)
            .values(
                available_minor=Account.available_minor + amount_minor,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise AccountNotFound()

        self._journal(session, user_id, LedgerEntryKind.CREDIT, amount_minor, reference, description)
        return True

    # ------------------------------------------------------------------
    # Queries

    def balance(self, session: Session, user_id: str) -> int:
        value = session.execute(
            select(Account.available_minor).where(Account.user_id == user_id)
        ).scalar_one_or_none()
        if value is None:
            raise AccountNotFound()
        return int(value)

    def entries(self, session: Session, user_id: str) -> list[LedgerEntry]:
        query = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.entry_id.asc())
        )
        return list(session.execute(query).scalars().all())

    @staticmethod
    def _entry_exists(session: Session, user_id: str, reference: str) -> bool:
        query = select(LedgerEntry.entry_id).where(
            LedgerEntry.user_id == user_id, LedgerEntry.reference == reference
        )
        return session.execute(query).first() is not None

    @staticmethod
    def _account_exists(session: Session, user_id: str) -> bool:
        query = select(Account.user_id).where(Account.user_id == user_id)
        return session.execute(query).first() is not None

    @staticmethod
    def _journal(
        session: Session,
        user_id: str,
        kind: LedgerEntryKind,
        amount_minor: int,
        reference: str,
        description: str | None,
    ) -> None:
        session.add(
            LedgerEntry(
                user_id=user_id,
                kind=kind.value,
                amount_minor=amount_minor,
                reference=reference,
                description=description,
            )
        )
        session.flush()
