"""In-process room fan-out for websocket subscribers."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import uuid4

from loguru import logger


class RoomBroadcaster(Protocol):
    """Deliver ``{type, data}`` to every subscriber of ``room``; best-effort."""

    def publish(self, room: str, message_type: str, data: dict[str, Any]) -> int:
        """Return the number of subscribers the message was queued for."""


def event_room(event_id: str) -> str:
    return f"event:{event_id}"


def challenge_room(challenge_id: str) -> str:
    return f"challenge:{challenge_id}"


@dataclass(eq=False)
class Subscriber:
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue
    subscriber_id: str = field(default_factory=lambda: uuid4().hex)
    rooms: set[str] = field(default_factory=set)


class RoomHub:
    """Thread-safe registry of room memberships.

    ``publish`` may be called from worker threads (sync route handlers); messages
    are handed to each subscriber's event loop with ``call_soon_threadsafe``.
    """

    def __init__(self, *, max_queue_size: int = 256) -> None:
        self._lock = threading.Lock()
        self._rooms: dict[str, set[Subscriber]] = {}
        self._subscribers: dict[str, Subscriber] = {}
        self._max_queue_size = max_queue_size

    def connect(self) -> Subscriber:
        """Register a subscriber bound to the running event loop."""

        subscriber = Subscriber(
            loop=asyncio.get_running_loop(),
            queue=asyncio.Queue(maxsize=self._max_queue_size),
        )
        with self._lock:
            self._subscribers[subscriber.subscriber_id] = subscriber
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.pop(subscriber.subscriber_id, None)
            for room in subscriber.rooms:
                members = self._rooms.get(room)
                if members is None:
                    continue
                members.discard(subscriber)
                if not members:
                    del self._rooms[room]
            subscriber.rooms.clear()

    def join(self, subscriber: Subscriber, room: str) -> None:
        with self._lock:
            self._rooms.setdefault(room, set()).add(subscriber)
            subscriber.rooms.add(room)

    def leave(self, subscriber: Subscriber, room: str) -> None:
        with self._lock:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(subscriber)
                if not members:
                    del self._rooms[room]
            subscriber.rooms.discard(room)

    def room_size(self, room: str) -> int:
        with self._lock:
            return len(self._rooms.get(room, ()))

    def publish(self, room: str, message_type: str, data: dict[str, Any]) -> int:
        message = {"type": message_type, "data": data}
        with self._lock:
            members = list(self._rooms.get(room, ()))

        delivered = 0
        for subscriber in members:
            try:
                subscriber.loop.call_soon_threadsafe(self._enqueue, subscriber, message)
            except RuntimeError:
                logger.warning(
                    "Dropping subscriber {} from {}: event loop closed",
                    subscriber.subscriber_id,
                    room,
                )
                self.disconnect(subscriber)
                continue
            delivered += 1
        return delivered

    @staticmethod
    def _enqueue(subscriber: Subscriber, message: dict[str, Any]) -> None:
        try:
            subscriber.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Subscriber {} is not draining its queue; dropped {} message",
                subscriber.subscriber_id,
                message.get("type"),
            )


class NullBroadcaster:
    """Broadcaster for processes without websocket clients (jobs, scripts)."""

    def publish(self, room: str, message_type: str, data: dict[str, Any]) -> int:
        logger.debug("No subscribers attached; skipped {} for {}", message_type, room)
        return 0
