"""
app/repositories/catalog_repository.py

Row preparation and upsert statements for inferred catalog tables.

Every statement is built with SQLAlchemy constructs and bound parameters;
no value is ever interpolated into SQL text. The caller controls
commit/rollback; this repository never commits on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from sqlalchemy import Integer, Table, func, select
from sqlalchemy.orm import Session

from app.ingestion.fingerprint import FINGERPRINT_COLUMN, fingerprint
from app.ingestion.sanitizer import normalize_record_keys, serialize_value
from app.ingestion.schema_registrar import primary_key_column
from db.dialects import upsert_insert

logger = logging.getLogger(__name__)


class RecordPreparationError(ValueError):
    """
    Raised when a record cannot be mapped onto its table's columns.
    """


class CatalogRepository:
    """
    Upsert engine for catalog rows keyed by their identifier column.

    Upsert semantics: a record whose identifier already exists overwrites
    every declared non-identifier column in a single
    ``INSERT ... ON CONFLICT DO UPDATE`` statement. There is no column-level
    merge.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def prepare_row(self, table: Table, record: Mapping[str, Any]) -> dict[str, Any]:
        """
        Project ``record`` onto ``table``'s columns.

        Missing fields become empty strings, fields unknown to the table are
        dropped, nested values are serialized and the fingerprint is computed
        over the projected row.

        Raises:
            RecordPreparationError: if the identifier is missing or does not
                fit the identifier column type.
        """
        normalized = normalize_record_keys(record)
        id_column = primary_key_column(table)
        raw_id = normalized.get(id_column.name)
        if raw_id is None or raw_id == "":
            raise RecordPreparationError(f"Record has no '{id_column.name}' identifier.")

        row: dict[str, Any] = {id_column.name: _coerce_identifier(raw_id, id_column.type)}
        for column in table.columns:
            if column.name in (id_column.name, FINGERPRINT_COLUMN):
                continue
            row[column.name] = serialize_value(normalized.get(column.name))

        dropped = set(normalized) - set(table.columns.keys())
        if dropped:
            logger.debug(
                "Dropping fields unknown to table=%s fields=%s",
                table.name,
                sorted(dropped),
            )

        if FINGERPRINT_COLUMN in table.columns:
            row[FINGERPRINT_COLUMN] = fingerprint(row)
        return row

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def upsert(self, table: Table, row: Mapping[str, Any]) -> None:
        """
        Insert ``row`` or update every non-identifier column on conflict.
        """
        id_column = primary_key_column(table)
        stmt = upsert_insert(self._session, table).values(**row)
        update_columns = {
            name: stmt.excluded[name]
            for name in row
            if name != id_column.name
        }
        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=[id_column.name],
                set_=update_columns,
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=[id_column.name])
        self._session.execute(stmt)

    def upsert_many(self, table: Table, rows: Iterable[Mapping[str, Any]]) -> int:
        """
        Apply :meth:`upsert` to each row in input order and return the count.
        """
        written = 0
        for row in rows:
            self.upsert(table, row)
            written += 1
        return written

    def insert_if_new(self, table: Table, rows: Iterable[Mapping[str, Any]]) -> int:
        """
        Insert rows whose identifier is absent; existing rows are untouched.

        Returns the number of rows actually inserted.
        """
        id_column = primary_key_column(table)
        inserted = 0
        for row in rows:
            stmt = (
                upsert_insert(self._session, table)
                .values(**row)
                .on_conflict_do_nothing(index_elements=[id_column.name])
            )
            result = self._session.execute(stmt)
            inserted += max(0, int(result.rowcount or 0))
        return inserted

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_fingerprints(self, table: Table, ids: Sequence[Any]) -> dict[Any, str | None]:
        """
        Return stored fingerprints for the given identifiers.
        """
        if not ids or FINGERPRINT_COLUMN not in table.columns:
            return {}
        id_column = primary_key_column(table)
        stmt = select(id_column, table.c[FINGERPRINT_COLUMN]).where(id_column.in_(list(ids)))
        return {row[0]: row[1] for row in self._session.execute(stmt)}

    def get_row(self, table: Table, identifier: Any) -> dict[str, Any] | None:
        id_column = primary_key_column(table)
        row = self._session.execute(select(table).where(id_column == identifier)).mappings().first()
        return dict(row) if row is not None else None

    def count_rows(self, table: Table) -> int:
        return int(self._session.scalar(select(func.count()).select_from(table)) or 0)


def _coerce_identifier(value: Any, column_type: Any) -> Any:
    if isinstance(column_type, Integer):
        try:
            return int(str(value).strip())
        except (TypeError, ValueError) as exc:
            raise RecordPreparationError(f"Identifier {value!r} is not an integer.") from exc
    return serialize_value(value)
