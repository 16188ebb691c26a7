"""Shared repository result types."""

from __future__ import annotations

from dataclasses import dataclass

from betchat.models import Event, EventPool


@dataclass(slots=True)
class EventRecord:
    """Bundle an event with its pool and participant count for listing operations."""

    event: Event
    pool: EventPool | None
    participant_count: int = 0


@dataclass(slots=True)
class SideCounts:
    yes: int = 0
    no: int = 0

    @property
    def total(self) -> int:
        return self.yes + self.no


__all__ = ["EventRecord", "SideCounts"]
