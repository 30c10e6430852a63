"""
db/dialects.py

Dialect-specific INSERT constructs supporting ON CONFLICT clauses.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_name(bind: Session | Connection | Engine) -> str:
    if isinstance(bind, Session):
        return bind.get_bind().dialect.name
    return bind.dialect.name


def upsert_insert(bind: Session | Connection | Engine, table: Any) -> Any:
    """
    Return an INSERT for ``table`` exposing ``on_conflict_do_update`` and
    ``on_conflict_do_nothing`` for the bind's dialect.
    """

    name = dialect_name(bind)
    factory = _INSERT_BY_DIALECT.get(name)
    if factory is None:
        raise RuntimeError(f"Unsupported database dialect for upserts: {name}.")
    return factory(table)
