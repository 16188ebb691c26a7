"""Pro-rata settlement of the losing pool among winners."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Stake:
    participation_id: int
    prediction: bool
    wager_minor: int


def allocate_pro_rata(stakes: Sequence[Stake], winning_outcome: bool) -> dict[int, int]:
    """Split the whole pool among winners in proportion to their stakes.

    Each winner gets their stake back plus ``stake * losing / winning`` of the
    losing pool, floored to minor units. Leftover minor units go one each to
    the largest fractional remainders, earlier stakes first on ties, so the
    payouts always sum to the pool total. Losers get 0. If nobody backed the
    winning outcome every stake is returned.

    ``stakes`` must be in join order.
    """

    if not stakes:
        return {}

    winners = [stake for stake in stakes if stake.prediction == winning_outcome]
    if not winners:
        return {stake.participation_id: stake.wager_minor for stake in stakes}

    winning_total = sum(stake.wager_minor for stake in winners)
    losing_total = sum(stake.wager_minor for stake in stakes) - winning_total

    payouts = {stake.participation_id: 0 for stake in stakes}
    remainders: list[tuple[int, int, int]] = []
    distributed = 0
    for index, stake in enumerate(winners):
        share, remainder = divmod(stake.wager_minor * losing_total, winning_total)
        payouts[stake.participation_id] = stake.wager_minor + share
        distributed += share
        remainders.append((-remainder, index, stake.participation_id))

    leftover = losing_total - distributed
    for _, _, participation_id in sorted(remainders)[:leftover]:
        payouts[participation_id] += 1
    return payouts


__all__ = ["Stake", "allocate_pro_rata"]
