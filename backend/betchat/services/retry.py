"""Bounded retry for per-participant ledger effects."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from typing import TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError, IntegrityError

from betchat.core.errors import LedgerUnavailable

T = TypeVar("T")

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (LedgerUnavailable, DBAPIError)


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, IntegrityError):
        return False
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


def run_with_retry(
    operation: Callable[[], T],
    *,
    attempts: int,
    backoff: Sequence[float],
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` until it succeeds or ``attempts`` are exhausted.

    Only transient failures (ledger transport, database errors) are retried; the
    last exception propagates unchanged.
    """

    total_attempts = max(attempts, 1)
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except Exception as exc:
            retryable = _should_retry(exc) and attempt < total_attempts
            logger.warning(
                "{} failed attempt={}/{} error={} retryable={}",
                description,
                attempt,
                total_attempts,
                exc.__class__.__name__,
                retryable,
            )
            if not retryable:
                raise
            delay = backoff[min(attempt - 1, len(backoff) - 1)] if backoff else 0.0
            if delay > 0:
                sleep(delay)


__all__ = ["run_with_retry"]
