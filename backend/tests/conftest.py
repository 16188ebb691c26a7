from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

os.environ.setdefault("DATABASE_URL", "sqlite://")
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from betchat.core.config import Settings
from betchat.db import build_db_components, init_db, session_scope
from betchat.domain import EventSpec, to_minor
from betchat.ledger import SqlLedger
from betchat.services.challenge_service import ChallengeService
from betchat.services.lifecycle_service import EventLifecycleManager
from betchat.services.stake_service import StakeOrchestrator


class FrozenClock:
    """Deterministic clock shared by every service in a test."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str, dict[str, Any]]] = []

    def publish(self, room: str, message_type: str, data: dict[str, Any]) -> int:
        self.messages.append((room, message_type, data))
        return 1

    def types_for(self, room: str) -> list[str]:
        return [message_type for target, message_type, _ in self.messages if target == room]


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'betchat.db'}",
        payout_retry_attempts=2,
        payout_retry_backoff_seconds="0",
    )
    monkeypatch.setattr("betchat.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("betchat.core.config.settings", settings)
    return settings


@pytest.fixture
def db_components(test_settings):
    engine, factory = build_db_components(test_settings.resolved_database_url)
    init_db(engine)
    yield engine, factory
    engine.dispose()


@pytest.fixture
def session_factory(db_components):
    return db_components[1]


@pytest.fixture
def clock() -> FrozenClock:
    # Anchored to wall-clock time so routes that read the real clock agree.
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def ledger() -> SqlLedger:
    return SqlLedger()


@pytest.fixture
def fund(session_factory, ledger):
    """Open an account for ``user_id`` holding ``amount`` major units."""

    def _fund(user_id: str, amount: Decimal | int | str = 0) -> None:
        with session_scope(session_factory) as session:
            ledger.open_account(session, user_id)
            minor = to_minor(amount)
            if minor:
                ledger.credit(session, user_id, minor, reference=f"deposit:{user_id}:{minor}")

    return _fund


@pytest.fixture
def balance(session_factory, ledger):
    def _balance(user_id: str) -> int:
        with session_scope(session_factory) as session:
            return ledger.balance(session, user_id)

    return _balance


@pytest.fixture
def stakes(session_factory, ledger, broadcaster, test_settings, clock) -> StakeOrchestrator:
    return StakeOrchestrator(
        session_factory,
        ledger=ledger,
        broadcaster=broadcaster,
        settings=test_settings,
        clock=clock,
    )


@pytest.fixture
def lifecycle(session_factory, ledger, broadcaster, test_settings, clock) -> EventLifecycleManager:
    return EventLifecycleManager(
        session_factory,
        ledger=ledger,
        broadcaster=broadcaster,
        settings=test_settings,
        clock=clock,
        sleep=lambda _: None,
    )


@pytest.fixture
def challenges(session_factory, stakes, lifecycle) -> ChallengeService:
    return ChallengeService(session_factory, stakes=stakes, lifecycle=lifecycle)


@pytest.fixture
def make_event(lifecycle, clock):
    """Create an event starting in an hour and running for two hours."""

    def _make_event(creator_id: str = "creator", **overrides: Any):
        values: dict[str, Any] = {
            "title": "Will it rain in Lagos tomorrow?",
            "category": "weather",
            "start_time": clock.now + timedelta(hours=1),
            "end_time": clock.now + timedelta(hours=3),
            "wager_minor": to_minor(100),
        }
        values.update(overrides)
        return lifecycle.create(EventSpec(**values), creator_id)

    return _make_event
