from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from ..context import ServiceContext
from ..db import new_id, to_db, utcnow
from ..errors import ValidationError
from ..models import CalendarEntity
from ..schemas import CalendarCreate, CalendarFilters, CalendarUpdate
from .base import EntityService
from .enrichment import fetch_grouped
from .filters import WhereBuilder, placeholders
from .rows import calendar_from_row

DEFAULT_CALENDAR_NAME = "My Calendar"
DEFAULT_CALENDAR_COLOR = "#3B82F6"


# PUBLIC_INTERFACE
class CalendarService(EntityService[CalendarEntity, CalendarCreate, CalendarUpdate, CalendarFilters]):
    """
    Calendars. Each user has exactly one default calendar once they have any:
    the first calendar becomes the default, making another calendar the
    default clears the flag elsewhere, and deleting the default promotes the
    oldest remaining calendar.
    """

    table_name = "calendars"
    entity_name = "Calendar"
    create_model = CalendarCreate
    update_model = CalendarUpdate
    filter_model = CalendarFilters
    default_order = "ORDER BY is_default DESC, name ASC, id ASC"
    nullable_fields = frozenset({"description"})

    def row_to_entity(self, row: sqlite3.Row) -> CalendarEntity:
        return calendar_from_row(row)

    def apply_filters(self, where: WhereBuilder, filters: CalendarFilters, ctx: Optional[ServiceContext]) -> None:
        where.flag("is_visible", filters.is_visible)
        where.flag("is_default", filters.is_default)
        where.ilike(("name", "description"), filters.search)

    def _name_taken(
        self, conn: sqlite3.Connection, user_id: str, name: str, exclude_id: Optional[str] = None
    ) -> bool:
        sql = "SELECT 1 FROM calendars WHERE user_id = ? AND LOWER(name) = LOWER(?)"
        params: List[Any] = [user_id, name]
        if exclude_id is not None:
            sql += " AND id <> ?"
            params.append(exclude_id)
        return conn.execute(sql, params).fetchone() is not None

    def _clear_default(self, conn: sqlite3.Connection, user_id: str) -> None:
        conn.execute(
            "UPDATE calendars SET is_default = 0, updated_at = ? WHERE user_id = ? AND is_default = 1",
            (to_db(utcnow()), user_id),
        )

    def validate_create(self, conn: sqlite3.Connection, data: CalendarCreate, ctx: Optional[ServiceContext]) -> None:
        if self._name_taken(conn, self.require_user(ctx), data.name):
            raise ValidationError("Calendar name already exists")

    def to_insert(self, conn: sqlite3.Connection, data: CalendarCreate, ctx: Optional[ServiceContext]) -> Dict[str, Any]:
        user_id = self.require_user(ctx)
        has_any = conn.execute("SELECT 1 FROM calendars WHERE user_id = ? LIMIT 1", (user_id,)).fetchone()
        is_default = data.is_default or has_any is None
        if is_default:
            self._clear_default(conn, user_id)
        return {
            "name": data.name,
            "color": data.color,
            "description": data.description,
            "is_visible": 1 if data.is_visible else 0,
            "is_default": 1 if is_default else 0,
        }

    def validate_update(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: CalendarUpdate, ctx: Optional[ServiceContext]
    ) -> None:
        if data.name is not None and self._name_taken(conn, current["user_id"], data.name, exclude_id=current["id"]):
            raise ValidationError("Calendar name already exists")
        if data.is_default is False and current["is_default"]:
            raise ValidationError("Cannot unset the default calendar; make another calendar the default instead")

    def to_changes(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: CalendarUpdate, ctx: Optional[ServiceContext]
    ) -> Dict[str, Any]:
        changes = self.field_changes(data)
        if data.is_default and not current["is_default"]:
            self._clear_default(conn, current["user_id"])
        elif "is_default" in changes:
            del changes["is_default"]
        return changes

    def before_delete(self, conn: sqlite3.Connection, current: sqlite3.Row, ctx: Optional[ServiceContext]) -> None:
        other = conn.execute(
            "SELECT id FROM calendars WHERE user_id = ? AND id <> ? ORDER BY created_at ASC, id ASC LIMIT 1",
            (current["user_id"], current["id"]),
        ).fetchone()
        if other is None:
            raise ValidationError("Cannot delete the only calendar")
        if current["is_default"]:
            conn.execute(
                "UPDATE calendars SET is_default = 1, updated_at = ? WHERE id = ?", (to_db(utcnow()), other["id"])
            )

    # ------------------------------------------------------------ extensions

    # PUBLIC_INTERFACE
    def get_default(self, ctx: Optional[ServiceContext] = None) -> CalendarEntity:
        """The user's default calendar, promoting their oldest one or creating "My Calendar" if needed."""
        user_id = self.require_user(ctx)
        with self.logged("get_default", ctx):
            with self.db.transaction() as conn:
                row = conn.execute(
                    "SELECT * FROM calendars WHERE user_id = ? ORDER BY is_default DESC, created_at ASC, id ASC LIMIT 1",
                    (user_id,),
                ).fetchone()
                if row is None:
                    calendar_id = new_id()
                    self.insert_row(
                        conn,
                        {
                            "id": calendar_id,
                            "name": DEFAULT_CALENDAR_NAME,
                            "color": DEFAULT_CALENDAR_COLOR,
                            "is_visible": 1,
                            "is_default": 1,
                            "user_id": user_id,
                            **self.timestamps(),
                        },
                    )
                    return self.fetch_one(conn, calendar_id, ctx)  # type: ignore[return-value]
                if not row["is_default"]:
                    self.update_row(conn, row["id"], {"is_default": 1, "updated_at": to_db(utcnow())})
                return self.fetch_one(conn, row["id"], ctx)  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    def set_default(self, calendar_id: str, ctx: Optional[ServiceContext] = None) -> CalendarEntity:
        return self.update(calendar_id, {"is_default": True}, ctx)  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    def toggle_visibility(self, calendar_id: str, ctx: Optional[ServiceContext] = None) -> CalendarEntity:
        with self.logged("toggle_visibility", ctx, id=calendar_id):
            with self.db.transaction() as conn:
                current = self._load_for_write(conn, calendar_id, ctx)
                self.update_row(
                    conn,
                    calendar_id,
                    {"is_visible": 0 if current["is_visible"] else 1, "updated_at": to_db(utcnow())},  # type: ignore[index]
                )
                return self.fetch_one(conn, calendar_id, ctx)  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    def get_visible(self, ctx: Optional[ServiceContext] = None) -> List[CalendarEntity]:
        return self.find_all({"is_visible": True}, ctx)

    # PUBLIC_INTERFACE
    def get_with_event_counts(self, ctx: Optional[ServiceContext] = None) -> List[CalendarEntity]:
        user_id = self.require_user(ctx)
        with self.logged("get_with_event_counts", ctx):
            with self.db.connect() as conn:
                calendars = self.select(conn, CalendarFilters(), ctx)
                counts = fetch_grouped(
                    conn,
                    "SELECT calendar_id, COUNT(*) AS cnt FROM events "
                    "WHERE user_id = ? AND calendar_id IN ({keys}) GROUP BY calendar_id",
                    (c["id"] for c in calendars),
                    "calendar_id",
                    leading=(user_id,),
                )
        for calendar in calendars:
            rows = counts.get(calendar["id"]) or []
            calendar["event_count"] = int(rows[0]["cnt"]) if rows else 0
        return calendars

    # PUBLIC_INTERFACE
    def reorder(self, calendar_ids: List[str], ctx: Optional[ServiceContext] = None) -> List[CalendarEntity]:
        """Validate that every id belongs to the caller and return the calendars in that order."""
        user_id = self.require_user(ctx)
        ids = list(dict.fromkeys(calendar_ids))
        with self.logged("reorder", ctx, ids=ids):
            if not ids:
                return []
            with self.db.connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM calendars WHERE user_id = ? AND id IN ({placeholders(len(ids))})",
                    [user_id, *ids],
                ).fetchall()
            if len(rows) != len(ids):
                raise ValidationError("Some calendars not found or access denied")
            by_id = {r["id"]: self.row_to_entity(r) for r in rows}
            return [by_id[i] for i in ids]
