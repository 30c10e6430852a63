"""
db/models/ingestion_cursor.py

Progress cursor model: the resume position of one paginated or sequential
source.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class CursorKind:
    PAGE = "page"
    ID = "id"


class IngestionCursor(Base, TimestampMixin):
    __tablename__ = "ingestion_cursors"

    source: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
    )
    kind: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="page or id",
    )
    position: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Last fully committed page number or identifier",
    )
