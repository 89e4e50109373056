"""Dialect-aware single-statement upserts.

Every helper here compiles to exactly one INSERT statement so concurrent writers
never interleave a read and a write against the same row.
"""
from typing import Any, Callable, Dict, List, Sequence, Tuple

from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.orm import Session

UpdateBuilder = Callable[[Any, Any], List[Tuple[str, Any]]]

_ON_CONFLICT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def dialect_name(db: Session) -> str:
    return db.get_bind().dialect.name


def upsert(
    db: Session,
    model,
    rows: List[Dict[str, Any]],
    conflict_columns: Sequence[str],
    build_updates: UpdateBuilder,
) -> int:
    """Insert ``rows`` and merge into existing rows on a unique-key conflict.

    ``build_updates(table, incoming)`` returns ordered ``(column, expression)``
    pairs. ``table`` columns refer to the stored row and ``incoming`` to the row
    being inserted. MySQL evaluates assignments left to right, so derived columns
    must come before the columns they read.
    """
    if not rows:
        return 0

    table = model.__table__
    dialect = dialect_name(db)

    if dialect in _ON_CONFLICT_INSERTS:
        stmt = _ON_CONFLICT_INSERTS[dialect](table).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_=dict(build_updates(table, stmt.excluded)),
        )
    elif dialect == "mysql":
        stmt = mysql.insert(table).values(rows)
        stmt = stmt.on_duplicate_key_update(build_updates(table, stmt.inserted))
    else:
        raise ValueError(f"Upsert is not supported for dialect '{dialect}'")

    return db.execute(stmt).rowcount


def insert_ignore(db: Session, model, row: Dict[str, Any], conflict_columns: Sequence[str]) -> int:
    """Insert ``row`` unless a row with the same unique key already exists."""
    table = model.__table__
    dialect = dialect_name(db)

    if dialect in _ON_CONFLICT_INSERTS:
        stmt = _ON_CONFLICT_INSERTS[dialect](table).values(row)
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    elif dialect == "mysql":
        stmt = mysql.insert(table).values(row).prefix_with("IGNORE")
    else:
        raise ValueError(f"Insert-ignore is not supported for dialect '{dialect}'")

    return db.execute(stmt).rowcount
