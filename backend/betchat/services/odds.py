"""Quoted payout multipliers derived from pool imbalance."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from betchat.core.config import Settings
from betchat.domain import Outcome, PoolSnapshot
from betchat.domain.money import MINOR_PER_MAJOR

DEFAULT_ODDS = Decimal("2.0")
MIN_ODDS = Decimal("1.1")
MAX_ODDS = Decimal("10.0")
_QUANTUM = Decimal("0.01")


def odds(
    pool_total: int,
    pool_for_side: int,
    pool_for_opposite: int,
    *,
    default: Decimal = DEFAULT_ODDS,
    floor: Decimal = MIN_ODDS,
    ceiling: Decimal = MAX_ODDS,
    unit: int = 1,
) -> Decimal:
    """Return ``pool_total / max(pool_for_opposite, unit)`` clamped to ``[floor, ceiling]``.

    Amounts are integers in a common unit; ``unit`` is the smallest opposite
    pool used as the divisor (one major currency unit when amounts are minor
    units). An empty pool quotes ``default`` on both sides.
    """

    if min(pool_total, pool_for_side, pool_for_opposite) < 0:
        raise ValueError("Pool amounts must be non-negative")
    if pool_total == 0:
        return default.quantize(_QUANTUM, rounding=ROUND_HALF_UP)

    raw = Decimal(pool_total) / Decimal(max(pool_for_opposite, unit))
    clamped = min(max(raw, floor), ceiling)
    return clamped.quantize(_QUANTUM, rounding=ROUND_HALF_UP)


def odds_options(settings: Settings) -> dict[str, Decimal]:
    return {
        "default": settings.odds_default,
        "floor": settings.odds_floor,
        "ceiling": settings.odds_ceiling,
    }


def quote(snapshot: PoolSnapshot, outcome: Outcome, **kwargs) -> Decimal:
    """Quote for ``outcome`` on a snapshot held in minor units."""

    kwargs.setdefault("unit", MINOR_PER_MAJOR)
    return odds(
        snapshot.total_minor,
        snapshot.side(outcome),
        snapshot.side(outcome.opposite),
        **kwargs,
    )


def quote_both(snapshot: PoolSnapshot, **kwargs) -> tuple[Decimal, Decimal]:
    """Return ``(yes_odds, no_odds)`` for the snapshot."""

    return quote(snapshot, Outcome.YES, **kwargs), quote(snapshot, Outcome.NO, **kwargs)
