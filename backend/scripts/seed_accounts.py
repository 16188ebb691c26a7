import argparse
from decimal import Decimal
from uuid import uuid4

from loguru import logger

from betchat import crud
from betchat.core.config import get_settings
from betchat.core.errors import InvalidAmount
from betchat.db import init_db, session_scope
from betchat.domain import format_amount, to_minor
from betchat.ledger import SqlLedger


def _parse_grant(raw: str) -> tuple[str, int]:
    if "=" not in raw:
        raise argparse.ArgumentTypeError(f"Expected USER_ID=AMOUNT, got {raw!r}")
    user_id, amount = raw.split("=", 1)
    user_id = user_id.strip()
    if not user_id:
        raise argparse.ArgumentTypeError(f"Missing user id in {raw!r}")
    try:
        minor = to_minor(Decimal(amount.strip()))
    except (InvalidAmount, ArithmeticError) as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount in {raw!r}") from exc
    if minor < 0:
        raise argparse.ArgumentTypeError(f"Amount must not be negative in {raw!r}")
    return user_id, minor


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or top up in-database ledger accounts")
    parser.add_argument(
        "--user",
        dest="grants",
        action="append",
        type=_parse_grant,
        required=True,
        metavar="USER_ID=AMOUNT",
        help="Account to create and the amount to credit (repeatable, e.g. --user alice=5000)",
    )
    parser.add_argument(
        "--reference",
        default=None,
        help="Ledger reference for the credits; re-running with the same reference is a no-op",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    init_db()
    ledger = SqlLedger()
    reference = args.reference or f"seed:{uuid4().hex[:12]}"

    credited = 0
    with session_scope() as session:
        for user_id, amount in args.grants:
            crud.open_account(session, user_id)
            if amount and ledger.credit(
                session, user_id, amount, reference=reference, description="Seed balance"
            ):
                credited += 1
            logger.info(
                "Account {} balance {}",
                user_id,
                format_amount(crud.account_balance(session, user_id), settings.currency_symbol),
            )

    logger.info("Seeded {} accounts ({} credited)", len(args.grants), credited)
    return credited


if __name__ == "__main__":
    main()
