from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from ..conflicts import overlap_window
from ..context import ServiceContext
from ..db import Database, to_db, utcnow
from ..errors import ValidationError
from ..models import EventConflict, EventEntity
from ..recurrence import is_valid_rrule
from ..schemas import EventCreate, EventFilters, EventUpdate, _parse_datetime
from ..settings import Settings
from ..utils import day_bounds, month_bounds, week_start
from .base import EntityService
from .enrichment import fetch_indexed, pick
from .filters import WhereBuilder
from .rows import event_from_row

DateLike = Union[date, datetime, str]


def _validate_event(title: str, start: datetime, end: datetime, all_day: bool, recurrence: Optional[str]) -> None:
    if not title or not title.strip():
        raise ValidationError("Event title is required")
    if not all_day and start >= end:
        raise ValidationError("Event start must be before end time")
    if recurrence and not is_valid_rrule(recurrence):
        raise ValidationError("Invalid recurrence rule format")


# PUBLIC_INTERFACE
class EventService(EntityService[EventEntity, EventCreate, EventUpdate, EventFilters]):
    """
    Calendar events.  A recurring event is one row holding its rule; queries
    and conflict checks only ever look at that row's own start and end.
    """

    table_name = "events"
    entity_name = "Event"
    create_model = EventCreate
    update_model = EventUpdate
    filter_model = EventFilters
    default_order = "ORDER BY start_at ASC, created_at DESC, id ASC"
    column_map = {"start": "start_at", "end": "end_at"}
    nullable_fields = frozenset({"description", "location", "notes", "recurrence"})

    def __init__(
        self, db: Database, settings: Optional[Settings] = None, clock: Callable[[], datetime] = utcnow
    ) -> None:
        super().__init__(db, settings)
        self.clock = clock

    def row_to_entity(self, row: sqlite3.Row) -> EventEntity:
        return event_from_row(row)

    def apply_filters(self, where: WhereBuilder, filters: EventFilters, ctx: Optional[ServiceContext]) -> None:
        where.eq("calendar_id", filters.calendar_id)
        where.in_("calendar_id", filters.calendar_ids)
        if filters.start is not None:
            where.add("end_at >= ?", to_db(filters.start))
        if filters.end is not None:
            where.add("start_at <= ?", to_db(filters.end))
        where.ilike(("title", "description", "location", "notes"), filters.search)
        where.flag("all_day", filters.all_day)
        if filters.has_recurrence is True:
            where.add("(recurrence IS NOT NULL AND recurrence <> '')")
        elif filters.has_recurrence is False:
            where.add("(recurrence IS NULL OR recurrence = '')")

    def enrich(
        self, conn: sqlite3.Connection, entities: List[EventEntity], ctx: Optional[ServiceContext]
    ) -> List[EventEntity]:
        calendars = fetch_indexed(
            conn,
            "SELECT id, name, color, is_visible FROM calendars WHERE id IN ({keys})",
            (e["calendar_id"] for e in entities),
        )
        for event in entities:
            row = calendars.get(event["calendar_id"])
            if row is not None:
                summary = pick(row, "id", "name", "color")
                summary["is_visible"] = bool(row["is_visible"])
                event["calendar"] = summary  # type: ignore[typeddict-item]
        return entities

    def _require_calendar(self, conn: sqlite3.Connection, calendar_id: str, user_id: str) -> None:
        row = conn.execute(
            "SELECT 1 FROM calendars WHERE user_id = ? AND id = ?", (user_id, calendar_id)
        ).fetchone()
        if row is None:
            raise ValidationError("Calendar not found or access denied")

    def validate_create(self, conn: sqlite3.Connection, data: EventCreate, ctx: Optional[ServiceContext]) -> None:
        _validate_event(data.title, data.start, data.end, data.all_day, data.recurrence)
        self._require_calendar(conn, data.calendar_id, self.require_user(ctx))

    def to_insert(self, conn: sqlite3.Connection, data: EventCreate, ctx: Optional[ServiceContext]) -> Dict[str, Any]:
        return {
            "title": data.title,
            "description": data.description,
            "start_at": to_db(data.start),
            "end_at": to_db(data.end),
            "all_day": 1 if data.all_day else 0,
            "location": data.location,
            "notes": data.notes,
            "recurrence": data.recurrence or None,
            "calendar_id": data.calendar_id,
        }

    def validate_update(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: EventUpdate, ctx: Optional[ServiceContext]
    ) -> None:
        merged = event_from_row(current)
        for field in ("title", "start", "end", "all_day", "recurrence"):
            if field in data.model_fields_set and (getattr(data, field) is not None or field == "recurrence"):
                merged[field] = getattr(data, field)  # type: ignore[literal-required]
        _validate_event(merged["title"], merged["start"], merged["end"], merged["all_day"], merged["recurrence"])
        if data.calendar_id is not None and data.calendar_id != current["calendar_id"]:
            self._require_calendar(conn, data.calendar_id, current["user_id"])

    # ------------------------------------------------------------ conflicts

    # PUBLIC_INTERFACE
    def get_conflicts(
        self,
        start: DateLike,
        end: DateLike,
        ctx: Optional[ServiceContext] = None,
        exclude_id: Optional[str] = None,
        calendar_id: Optional[str] = None,
    ) -> List[EventConflict]:
        """
        Events of the caller overlapping ``[start, end)``.

        Touching intervals do not conflict.  All-day events take part like any
        other event.  Each entry carries the overlap window and its length in
        minutes; conflicts are reported, never resolved.
        """
        user_id = self.require_user(ctx)
        try:
            window_start = _parse_datetime(start)
            window_end = _parse_datetime(end)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if window_start is None or window_end is None or window_start >= window_end:
            raise ValidationError("Event start must be before end time")

        where = WhereBuilder(self.owner_clause(), user_id)
        where.add("start_at < ?", to_db(window_end))
        where.add("end_at > ?", to_db(window_start))
        if exclude_id is not None:
            where.add("id <> ?", exclude_id)
        where.eq("calendar_id", calendar_id)
        where_sql, params = where.build()

        with self.logged("get_conflicts", ctx, start=window_start, end=window_end, exclude=exclude_id):
            with self.db.connect() as conn:
                rows = conn.execute(f"SELECT * FROM events {where_sql} {self.default_order}", params).fetchall()
                events = self.enrich(conn, [self.row_to_entity(r) for r in rows], ctx)

        conflicts: List[EventConflict] = []
        for event in events:
            window = overlap_window(window_start, window_end, event["start"], event["end"])
            if window is None:
                continue
            conflicts.append(
                {"event": event, "overlap_start": window[0], "overlap_end": window[1], "duration_minutes": window[2]}
            )
        return conflicts

    # ------------------------------------------------------------ finders

    # PUBLIC_INTERFACE
    def find_by_date_range(
        self, start: DateLike, end: DateLike, ctx: Optional[ServiceContext] = None
    ) -> List[EventEntity]:
        return self.find_all({"start": start, "end": end}, ctx)

    # PUBLIC_INTERFACE
    def find_by_calendar(self, calendar_id: str, ctx: Optional[ServiceContext] = None) -> List[EventEntity]:
        return self.find_all({"calendar_id": calendar_id}, ctx)

    # PUBLIC_INTERFACE
    def search(self, text: str, ctx: Optional[ServiceContext] = None) -> List[EventEntity]:
        if not text or not text.strip():
            raise ValidationError("Search query is required")
        return self.find_all({"search": text}, ctx)

    # PUBLIC_INTERFACE
    def find_upcoming(self, limit: int = 10, ctx: Optional[ServiceContext] = None) -> List[EventEntity]:
        """Next events starting from now, on visible calendars only."""
        user_id = self.require_user(ctx)
        with self.logged("find_upcoming", ctx, limit=limit):
            with self.db.connect() as conn:
                rows = conn.execute(
                    """
                    SELECT e.* FROM events e
                    JOIN calendars c ON c.id = e.calendar_id
                    WHERE e.user_id = ? AND e.start_at >= ? AND c.is_visible = 1
                    ORDER BY e.start_at ASC, e.id ASC
                    LIMIT ?
                    """,
                    (user_id, to_db(self.clock()), max(limit, 0)),
                ).fetchall()
                return self.enrich(conn, [self.row_to_entity(r) for r in rows], ctx)

    # PUBLIC_INTERFACE
    def find_by_month(self, year: int, month: int, ctx: Optional[ServiceContext] = None) -> List[EventEntity]:
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")
        start, end = month_bounds(year, month, self.clock().tzinfo)
        return self.find_by_date_range(start, end, ctx)

    # PUBLIC_INTERFACE
    def find_today(self, ctx: Optional[ServiceContext] = None) -> List[EventEntity]:
        start, end = day_bounds(self.clock())
        return self.find_by_date_range(start, end, ctx)

    # PUBLIC_INTERFACE
    def find_this_week(self, ctx: Optional[ServiceContext] = None) -> List[EventEntity]:
        start = week_start(self.clock())
        return self.find_by_date_range(start, start + timedelta(days=7) - timedelta(microseconds=1), ctx)

    # ------------------------------------------------------------ writes

    # PUBLIC_INTERFACE
    def create_recurring(self, data: Any, ctx: Optional[ServiceContext] = None) -> EventEntity:
        """Store a recurring event as a single row carrying its rule."""
        payload = self.coerce(EventCreate, data)
        if not payload.recurrence:
            raise ValidationError("Recurrence rule is required")
        return self.create(payload, ctx)

    # PUBLIC_INTERFACE
    def move_to_calendar(self, event_id: str, calendar_id: str, ctx: Optional[ServiceContext] = None) -> EventEntity:
        return self.update(event_id, {"calendar_id": calendar_id}, ctx)  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    def duplicate(
        self, event_id: str, ctx: Optional[ServiceContext] = None, overrides: Optional[Dict[str, Any]] = None
    ) -> EventEntity:
        """Copy one of the caller's events as "Copy of <title>", optionally changing fields."""
        with self.db.connect() as conn:
            current = self._load_for_write(conn, event_id, ctx)
        source = event_from_row(current)  # type: ignore[arg-type]
        data = {
            "title": f"Copy of {source['title']}",
            "description": source["description"],
            "start": source["start"],
            "end": source["end"],
            "all_day": source["all_day"],
            "location": source["location"],
            "notes": source["notes"],
            "recurrence": source["recurrence"],
            "calendar_id": source["calendar_id"],
            **(overrides or {}),
        }
        return self.create(data, ctx)
