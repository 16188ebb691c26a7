from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from betchat import crud
from betchat.core.errors import AccountNotFound


@patch("betchat.crud.SqlLedger")
def test_account_helpers(mock_ledger):
    """Verify account helpers go through the SQL ledger."""
    session = MagicMock()
    mock_ledger.return_value.balance.return_value = 500

    crud.open_account(session, "alice", username="Alice")
    assert crud.account_balance(session, "alice") == 500
    mock_ledger.return_value.open_account.assert_called_once_with(session, "alice", username="Alice")
    mock_ledger.return_value.balance.assert_called_once_with(session, "alice")


def test_account_helpers_against_database(session_factory, fund):
    """Verify opening an existing account keeps its balance and unknown accounts raise."""
    fund("alice", 250)
    session = session_factory()
    try:
        crud.open_account(session, "alice")
        assert crud.account_balance(session, "alice") == 25_000
        with pytest.raises(AccountNotFound):
            crud.account_balance(session, "nobody")
    finally:
        session.close()
