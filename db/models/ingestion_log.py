"""
db/models/ingestion_log.py

Append-only run log entries, pruned after a retention window.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, utc_now


class RunLogStatus:
    STARTED = "started"
    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"
    SKIPPED = "skipped"


class IngestionLog(Base):
    __tablename__ = "ingestion_logs"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    source: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    __table_args__ = (
        Index("ix_ingestion_logs_created_at", "created_at"),
        Index("ix_ingestion_logs_source_created_at", "source", "created_at"),
    )
