from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class EventKind(str, Enum):
    EVENT = "event"
    CHALLENGE = "challenge"


class LedgerEntryKind(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class MatchStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("available_minor >= 0", name="ck_accounts_available_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)
    available_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    entries: Mapped[list["LedgerEntry"]] = relationship(
        "LedgerEntry", back_populates="account", cascade="all, delete-orphan"
    )


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("user_id", "reference", name="uq_ledger_entries_user_reference"),
        CheckConstraint("amount_minor > 0", name="ck_ledger_entries_amount_positive"),
    )

    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("accounts.user_id"), nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reference: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    account: Mapped[Account] = relationship("Account", back_populates="entries")


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("wager_minor > 0", name="ck_events_wager_positive"),
        CheckConstraint("max_participants >= 2", name="ck_events_max_participants"),
        Index("ix_events_kind_end_time", "kind", "end_time"),
    )

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default=EventKind.EVENT.value)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    rules: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_type: Mapped[str | None] = mapped_column(String, nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    wager_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    creator_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    challenged_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refunds_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settlement_outcome: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    settlement_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    pool: Mapped["EventPool"] = relationship(
        "EventPool", back_populates="event", uselist=False, cascade="all, delete-orphan"
    )
    participants: Mapped[list["EventParticipant"]] = relationship(
        "EventParticipant",
        back_populates="event",
        cascade="all, delete-orphan",
    )


class EventPool(Base):
    __tablename__ = "event_pools"
    __table_args__ = (
        CheckConstraint("total_minor = yes_minor + no_minor", name="ck_event_pools_conservation"),
        CheckConstraint("yes_minor >= 0 AND no_minor >= 0", name="ck_event_pools_non_negative"),
    )

    event_id: Mapped[str] = mapped_column(String, ForeignKey("events.event_id"), primary_key=True)
    total_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    yes_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    no_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    event: Mapped[Event] = relationship("Event", back_populates="pool")


class EventParticipant(Base):
    __tablename__ = "event_participants"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_participants_event_user"),
        CheckConstraint("wager_minor > 0", name="ck_event_participants_wager_positive"),
        Index("ix_event_participants_event_joined", "event_id", "joined_at"),
    )

    participation_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String, ForeignKey("events.event_id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    prediction: Mapped[bool] = mapped_column(Boolean, nullable=False)
    wager_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    odds_at_join: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    payout_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    event: Mapped[Event] = relationship("Event", back_populates="participants")


class EventMatch(Base):
    """Pairing of two opposing stakes on the same event."""

    __tablename__ = "event_matches"
    __table_args__ = (
        UniqueConstraint("participation_id", name="uq_event_matches_participation"),
        UniqueConstraint("opponent_participation_id", name="uq_event_matches_opponent"),
        Index("ix_event_matches_event", "event_id", "created_at"),
    )

    match_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String, ForeignKey("events.event_id"), nullable=False)
    participation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("event_participants.participation_id"), nullable=False
    )
    opponent_participation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("event_participants.participation_id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    opponent_id: Mapped[str] = mapped_column(String, nullable=False)
    prediction: Mapped[bool] = mapped_column(Boolean, nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    opponent_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=MatchStatus.ACTIVE.value)
    winner_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
