"""
Batched relation loading.

Each helper issues exactly one query for a whole batch of entities,
keyed by the distinct foreign keys found in that batch, and returns an
in-memory map the caller merges back onto its entities.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Sequence, TypeVar

from .filters import placeholders

K = TypeVar("K", bound=Hashable)


def distinct(values: Iterable[K]) -> List[K]:
    seen: Dict[K, None] = {}
    for v in values:
        if v is not None and v not in seen:
            seen[v] = None
    return list(seen)


def _run(
    conn: sqlite3.Connection, sql: str, keys: List[Any], leading: Sequence[Any]
) -> List[sqlite3.Row]:
    return conn.execute(sql.format(keys=placeholders(len(keys))), [*leading, *keys]).fetchall()


# PUBLIC_INTERFACE
def fetch_grouped(
    conn: sqlite3.Connection,
    sql: str,
    keys: Iterable[Any],
    group_by: str,
    leading: Sequence[Any] = (),
) -> Dict[Any, List[sqlite3.Row]]:
    """
    Run ``sql`` once for all ``keys`` and group the rows by ``group_by``.

    ``sql`` holds one ``{keys}`` marker where the placeholder list goes, e.g.
    ``SELECT * FROM attachments WHERE task_id IN ({keys})``.  ``leading``
    parameters (an owner id, say) bind before the keys.  Every key is present
    in the result, mapped to an empty list when nothing matched.
    """
    unique = distinct(keys)
    if not unique:
        return {}
    grouped: Dict[Any, List[sqlite3.Row]] = {k: [] for k in unique}
    for row in _run(conn, sql, unique, leading):
        grouped.setdefault(row[group_by], []).append(row)
    return grouped


# PUBLIC_INTERFACE
def fetch_indexed(
    conn: sqlite3.Connection,
    sql: str,
    keys: Iterable[Any],
    index_by: str = "id",
    leading: Sequence[Any] = (),
) -> Dict[Any, sqlite3.Row]:
    """Like ``fetch_grouped`` for one-to-one relations."""
    unique = distinct(keys)
    if not unique:
        return {}
    return {row[index_by]: row for row in _run(conn, sql, unique, leading)}


def pick(mapping: Mapping[str, Any], *fields: str) -> Dict[str, Any]:
    return {f: mapping[f] for f in fields}
