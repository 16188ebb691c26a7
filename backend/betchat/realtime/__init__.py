"""Realtime room broadcast for event and challenge subscribers."""

from .hub import (
    NullBroadcaster,
    RoomBroadcaster,
    RoomHub,
    Subscriber,
    challenge_room,
    event_room,
)

__all__ = [
    "NullBroadcaster",
    "RoomBroadcaster",
    "RoomHub",
    "Subscriber",
    "challenge_room",
    "event_room",
]
