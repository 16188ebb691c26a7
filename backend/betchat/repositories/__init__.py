"""Repository abstractions for database interactions."""

from .event_repository import EventRepository, status_filter
from .match_repository import MatchRepository
from .participation_repository import ParticipationRepository
from .pool_repository import PoolRepository
from .types import EventRecord, SideCounts

__all__ = [
    "EventRepository",
    "MatchRepository",
    "ParticipationRepository",
    "PoolRepository",
    "EventRecord",
    "SideCounts",
    "status_filter",
]
