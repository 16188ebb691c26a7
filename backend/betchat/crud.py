from __future__ import annotations

from sqlalchemy.orm import Session

from betchat.ledger import SqlLedger
from betchat.models import Account


def open_account(session: Session, user_id: str, *, username: str | None = None) -> Account:
    return SqlLedger().open_account(session, user_id, username=username)


def account_balance(session: Session, user_id: str) -> int:
    return SqlLedger().balance(session, user_id)
