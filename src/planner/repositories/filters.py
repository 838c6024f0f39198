"""
Predicate building shared by the entity services.

``WhereBuilder`` accumulates SQL clauses and their positional parameters
in lockstep.  The owner restriction, when present, is always added first
so that parameter positions are stable across services.  Nothing from
caller input is interpolated into SQL except through ``order_clause``,
which only emits allow-listed column names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..db import to_db


def placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def like_pattern(text: str) -> str:
    escaped = text.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


# PUBLIC_INTERFACE
class WhereBuilder:
    """Accumulates AND-ed clauses and their parameters."""

    def __init__(self, owner_clause: Optional[str] = None, owner_id: Optional[str] = None) -> None:
        self.clauses: List[str] = []
        self.params: List[Any] = []
        if owner_clause is not None:
            self.add(owner_clause, owner_id)

    def add(self, clause: str, *params: Any) -> "WhereBuilder":
        self.clauses.append(clause)
        self.params.extend(params)
        return self

    def eq(self, column: str, value: Any) -> "WhereBuilder":
        if value is None:
            return self
        if isinstance(value, bool):
            value = 1 if value else 0
        return self.add(f"{column} = ?", value)

    def flag(self, column: str, value: Optional[bool]) -> "WhereBuilder":
        return self.eq(column, value)

    def range(
        self, column: str, lower: Optional[datetime] = None, upper: Optional[datetime] = None
    ) -> "WhereBuilder":
        """Inclusive bounds on a timestamp column."""
        if lower is not None:
            self.add(f"{column} >= ?", to_db(lower))
        if upper is not None:
            self.add(f"{column} <= ?", to_db(upper))
        return self

    def ilike(self, columns: Sequence[str], text: Optional[str]) -> "WhereBuilder":
        """Case-insensitive substring match on any of ``columns``."""
        if text is None or not text.strip():
            return self
        pattern = like_pattern(text)
        ors = " OR ".join(f"LOWER(COALESCE({c}, '')) LIKE ? ESCAPE '\\'" for c in columns)
        return self.add(f"({ors})", *([pattern] * len(columns)))

    def in_(self, column: str, values: Optional[Iterable[Any]]) -> "WhereBuilder":
        if values is None:
            return self
        items = list(values)
        if not items:
            return self.add("1 = 0")
        return self.add(f"{column} IN ({placeholders(len(items))})", *items)

    def in_subselect(self, column: str, subselect: str, values: Optional[Iterable[Any]]) -> "WhereBuilder":
        """``column IN (subselect)`` where the subselect holds one ``{}`` for its placeholders."""
        if values is None:
            return self
        items = list(values)
        if not items:
            return self.add("1 = 0")
        return self.add(f"{column} IN ({subselect.format(placeholders(len(items)))})", *items)

    def build(self) -> Tuple[str, List[Any]]:
        if not self.clauses:
            return "", []
        return "WHERE " + " AND ".join(self.clauses), list(self.params)


# PUBLIC_INTERFACE
def order_clause(
    sort_by: Optional[str],
    sort_order: Optional[str],
    allowed: Mapping[str, str],
    default: str,
    tiebreak: str = "id ASC",
) -> str:
    """
    Build an ORDER BY from caller input. ``allowed`` maps public sort keys to
    SQL expressions; unknown keys fall back to ``default``.
    """
    key = (sort_by or "").strip()
    if key not in allowed:
        key = default
    direction = "ASC" if (sort_order or "").strip().lower() == "asc" else "DESC"
    return f"ORDER BY {allowed[key]} {direction}, {tiebreak}"
