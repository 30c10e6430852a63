"""
db/models/source_lock.py

Lease rows guarding a source against overlapping ingestion runs.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class SourceLock(Base):
    __tablename__ = "ingestion_source_locks"

    source: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
    )
    owner: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Lease end; an expired lock may be taken over",
    )
