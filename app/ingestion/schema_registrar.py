"""
app/ingestion/schema_registrar.py

Creates catalog tables on first sight of a source's records.

Column sets are inferred from the union of keys in the first batch and are
never altered afterwards: later fields that were not present at creation
time are dropped when rows are prepared. Schema drift is not reconciled.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import BigInteger, Column, MetaData, Table, Text, inspect
from sqlalchemy.orm import Session

from app.ingestion.fingerprint import FINGERPRINT_COLUMN
from app.ingestion.sanitizer import is_integer_like, normalize_identifier, normalize_record_keys
from app.logging_utils import log_event

logger = logging.getLogger(__name__)


class SchemaRegistrar:
    """
    Inspect, reflect and create inferred catalog tables for one session.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}

    def get_table(self, name: str) -> Table | None:
        """
        Return the reflected table, or ``None`` when it does not exist yet.
        """
        table_name = normalize_identifier(name)
        cached = self._tables.get(table_name)
        if cached is not None:
            return cached

        connection = self._session.connection()
        if not inspect(connection).has_table(table_name):
            return None

        table = Table(table_name, self._metadata, autoload_with=connection)
        self._tables[table_name] = table
        return table

    def ensure_table(
        self,
        name: str,
        sample_records: Sequence[Mapping[str, Any]],
        *,
        id_field: str = "id",
    ) -> Table:
        """
        Return the table named ``name``, creating it from ``sample_records``
        when it is absent.

        The identifier column becomes a BIGINT primary key when every
        sample identifier is integer-like, otherwise a TEXT primary key. All
        other columns are TEXT, plus the ``data_hash`` fingerprint column.
        Creation is committed immediately.
        """
        existing = self.get_table(name)
        if existing is not None:
            return existing

        table_name = normalize_identifier(name)
        id_column = normalize_identifier(id_field)
        columns = _infer_columns(sample_records, id_column=id_column)
        id_type: Any = BigInteger if _ids_are_integers(sample_records, id_column) else Text

        table = Table(
            table_name,
            self._metadata,
            Column(id_column, id_type, primary_key=True, autoincrement=False),
            *(Column(column, Text, nullable=True) for column in columns),
            Column(FINGERPRINT_COLUMN, Text, nullable=True),
        )
        table.create(self._session.connection(), checkfirst=True)
        self._session.commit()
        self._tables[table_name] = table

        log_event(
            logger,
            logging.INFO,
            "catalog_table_created",
            table=table_name,
            id_column=id_column,
            id_type="integer" if id_type is BigInteger else "text",
            column_count=len(columns) + 2,
        )
        return table


def primary_key_column(table: Table) -> Column[Any]:
    return list(table.primary_key.columns)[0]


def _infer_columns(
    sample_records: Sequence[Mapping[str, Any]],
    *,
    id_column: str,
) -> list[str]:
    keys: set[str] = set()
    for record in sample_records:
        keys.update(normalize_record_keys(record).keys())
    keys.discard(id_column)
    keys.discard(FINGERPRINT_COLUMN)
    return sorted(keys)


def _ids_are_integers(sample_records: Sequence[Mapping[str, Any]], id_column: str) -> bool:
    ids = [
        normalize_record_keys(record).get(id_column)
        for record in sample_records
    ]
    present = [value for value in ids if value is not None]
    return bool(present) and all(is_integer_like(value) for value in present)
