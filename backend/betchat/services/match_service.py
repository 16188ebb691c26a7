"""Pair a new stake with the most recent opposing stake of a similar size."""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from betchat.core.config import Settings, get_settings
from betchat.db import SessionLocal, session_scope
from betchat.domain import MatchView
from betchat.repositories import MatchRepository, ParticipationRepository

from .pool_service import to_match_view


def stake_window(amount_minor: int, tolerance: Decimal) -> tuple[int, int]:
    """Inclusive minor-unit range of stakes within ``tolerance`` of ``amount_minor``."""

    amount = Decimal(amount_minor)
    low = (amount * (1 - tolerance)).to_integral_value(rounding=ROUND_CEILING)
    high = (amount * (1 + tolerance)).to_integral_value(rounding=ROUND_FLOOR)
    return int(low), int(high)


class OpponentMatcher:
    """Each participation belongs to at most one match; unmatched stakes stay in the pool."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self.settings = settings or get_settings()

    def match(self, participation_id: int) -> MatchView | None:
        with session_scope(self._session_factory) as session:
            participation = ParticipationRepository(session).get_by_id(participation_id)
            if participation is None:
                return None
            low, high = stake_window(int(participation.wager_minor), self.settings.match_tolerance)
            matches = MatchRepository(session)
            opponent = matches.find_opponent(participation, low_minor=low, high_minor=high)
            if opponent is None:
                logger.debug(
                    "No opponent for participation={} event={} window={}..{}",
                    participation_id,
                    participation.event_id,
                    low,
                    high,
                )
                return None
            view = to_match_view(matches.insert(participation, opponent))

        logger.info(
            "Match found event={} user={} opponent={}",
            view.event_id,
            view.user_id,
            view.opponent_id,
        )
        return view


__all__ = ["OpponentMatcher", "stake_window"]
