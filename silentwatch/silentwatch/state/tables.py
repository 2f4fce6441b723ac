"""SQLAlchemy 2.0 ORM table definitions for the local persistent store."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Shared declarative base for SilentWatch tables."""


class QueuedEventTable(Base):
    """Telemetry events awaiting redelivery.

    ``key`` is assigned by SQLite ``AUTOINCREMENT`` so keys are unique and
    monotonically increasing, even after rows are deleted.
    """

    __tablename__ = "queued_events"
    __table_args__ = {"sqlite_autoincrement": True}

    key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class KeyValueTable(Base):
    """Small string key/value store (session identifier and similar)."""

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(256), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
