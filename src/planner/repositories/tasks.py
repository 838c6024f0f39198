from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Union

from ..context import ServiceContext
from ..db import Database, to_db, utcnow
from ..errors import AuthorizationError, ValidationError
from ..models import PRIORITY_RANK, TaskEntity, TaskStatus
from ..schemas import TaskCreate, TaskFilters, TaskUpdate, _parse_datetime
from ..settings import Settings
from ..utils import day_bounds, month_bounds, pagination_envelope, week_start
from .base import EntityService, db_value
from .enrichment import distinct, fetch_grouped
from .filters import WhereBuilder, order_clause, placeholders
from .rows import attachment_from_row, task_from_row, task_tag_from_row
from .task_lists import TaskListService

if TYPE_CHECKING:
    from .tags import TagService

logger = logging.getLogger(__name__)

DONE = TaskStatus.DONE.value
NOT_STARTED = TaskStatus.NOT_STARTED.value

SORTABLE = {
    "created_at": "created_at",
    "updated_at": "updated_at",
    "scheduled_date": "scheduled_date",
    "priority": "CASE priority " + " ".join(f"WHEN '{p}' THEN {r}" for p, r in PRIORITY_RANK.items()) + " ELSE 0 END",
    "title": "LOWER(title)",
}

_TAG_LINKS_SQL = """
    SELECT tt.*, tg.name AS tag_name, tg.type AS tag_type, tg.color AS tag_color
    FROM task_tags tt JOIN tags tg ON tg.id = tt.tag_id
    WHERE tt.task_id IN ({keys})
    ORDER BY tg.type ASC, tg.name ASC
"""


def resolve_completion(
    current_completed: bool,
    current_status: str,
    current_completed_at: Optional[str],
    completed: Optional[bool],
    status: Optional[str],
    now: datetime,
) -> Dict[str, Any]:
    """
    Column changes for a completion and/or status update, keeping
    ``status == DONE`` exactly when ``completed`` is true.
    """
    if status is not None:
        is_done = status == DONE
        if completed is not None and completed != is_done:
            raise ValidationError("Task status and completion flag disagree")
        completed = is_done
    if completed is None:
        return {}

    if completed:
        return {
            "completed": 1,
            "status": DONE,
            "completed_at": current_completed_at if current_completed else to_db(now),
        }
    if status is None:
        status = NOT_STARTED if current_status == DONE else current_status
    return {"completed": 0, "status": status, "completed_at": None}


# PUBLIC_INTERFACE
class TaskService(EntityService[TaskEntity, TaskCreate, TaskUpdate, TaskFilters]):
    """
    Tasks, enriched with their list summary (from the task-list cache), their
    attachments and their tag links.  Also hosts the all-or-nothing bulk
    update/delete operations.
    """

    table_name = "tasks"
    entity_name = "Task"
    create_model = TaskCreate
    update_model = TaskUpdate
    filter_model = TaskFilters
    nullable_fields = frozenset({"scheduled_date", "original_input", "clean_title"})

    def __init__(
        self,
        db: Database,
        task_lists: TaskListService,
        tags: "TagService",
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(db, settings)
        self.task_lists = task_lists
        self.tags = tags
        self.clock = clock

    def row_to_entity(self, row: sqlite3.Row) -> TaskEntity:
        return task_from_row(row)

    # ------------------------------------------------------------ reads

    def apply_filters(self, where: WhereBuilder, filters: TaskFilters, ctx: Optional[ServiceContext]) -> None:
        where.flag("completed", filters.completed)
        where.eq("task_list_id", filters.task_list_id)
        where.eq("priority", filters.priority)
        where.range("scheduled_date", filters.scheduled_from, filters.scheduled_to)
        where.ilike(("title", "clean_title"), filters.search)
        if filters.tags is not None:
            names = distinct(n.strip().lower() for n in filters.tags if n.strip())
            where.in_subselect(
                "id",
                "SELECT tt.task_id FROM task_tags tt JOIN tags tg ON tg.id = tt.tag_id WHERE tg.name IN ({})",
                names,
            )
        if filters.overdue is True:
            where.add("scheduled_date < ? AND completed = 0", to_db(self.clock()))
        elif filters.overdue is False:
            where.add("(scheduled_date IS NULL OR scheduled_date >= ? OR completed = 1)", to_db(self.clock()))

    def order_by(self, filters: TaskFilters) -> str:
        return order_clause(filters.sort_by, filters.sort_order, SORTABLE, "created_at")

    def page(self, filters: TaskFilters) -> Tuple[str, List[Any]]:
        if filters.limit is None:
            return "", []
        return "LIMIT ? OFFSET ?", [filters.limit, filters.offset or 0]

    def enrich(
        self, conn: sqlite3.Connection, entities: List[TaskEntity], ctx: Optional[ServiceContext]
    ) -> List[TaskEntity]:
        if not entities:
            return entities
        ids = [t["id"] for t in entities]

        summaries: Dict[str, Any] = {}
        for user_id in distinct(t["user_id"] for t in entities):
            summaries.update(
                self.task_lists.summaries_for(
                    conn, user_id, (t["task_list_id"] for t in entities if t["user_id"] == user_id)
                )
            )
        attachments = fetch_grouped(
            conn, "SELECT * FROM attachments WHERE task_id IN ({keys}) ORDER BY created_at ASC, id ASC", ids, "task_id"
        )
        links = fetch_grouped(conn, _TAG_LINKS_SQL, ids, "task_id")

        for task in entities:
            summary = summaries.get(task["task_list_id"])
            if summary is not None:
                task["task_list"] = summary
            task["attachments"] = [attachment_from_row(r) for r in attachments.get(task["id"], [])]
            task["tags"] = [task_tag_from_row(r) for r in links.get(task["id"], [])]
        return entities

    # ------------------------------------------------------------ writes

    def _require_list(self, conn: sqlite3.Connection, task_list_id: str, user_id: str) -> None:
        row = conn.execute(
            "SELECT 1 FROM task_lists WHERE user_id = ? AND id = ?", (user_id, task_list_id)
        ).fetchone()
        if row is None:
            raise ValidationError("Task list not found or access denied")

    # PUBLIC_INTERFACE
    def create(self, data: Any, ctx: Optional[ServiceContext] = None) -> TaskEntity:
        """Create a task and attach its tags in one transaction; no list means the default list."""
        payload = self.coerce(TaskCreate, data)
        self.require_user(ctx)
        if payload.task_list_id is None:
            default = self.task_lists.get_default(ctx)
            payload = payload.model_copy(update={"task_list_id": default["id"]})
        return super().create(payload, ctx)

    def validate_create(self, conn: sqlite3.Connection, data: TaskCreate, ctx: Optional[ServiceContext]) -> None:
        self._require_list(conn, data.task_list_id, self.require_user(ctx))  # type: ignore[arg-type]

    def to_insert(self, conn: sqlite3.Connection, data: TaskCreate, ctx: Optional[ServiceContext]) -> Dict[str, Any]:
        return {
            "title": data.title,
            "completed": 1 if data.completed else 0,
            "completed_at": to_db(self.clock()) if data.completed else None,
            "scheduled_date": to_db(data.scheduled_date),
            "priority": db_value(data.priority),
            "status": DONE if data.completed else NOT_STARTED,
            "original_input": data.original_input,
            "clean_title": data.clean_title,
            "task_list_id": data.task_list_id,
        }

    def after_insert(
        self, conn: sqlite3.Connection, entity_id: str, data: TaskCreate, ctx: Optional[ServiceContext]
    ) -> None:
        for tag in data.tags:
            tag_id = self.tags.find_or_create_in(conn, tag.name, tag.type, tag.color)
            self.tags.link_in(conn, entity_id, tag_id, tag.value, tag.display_text, tag.icon_name)

    def validate_update(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: TaskUpdate, ctx: Optional[ServiceContext]
    ) -> None:
        if data.task_list_id is not None and data.task_list_id != current["task_list_id"]:
            self._require_list(conn, data.task_list_id, current["user_id"])

    def to_changes(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: TaskUpdate, ctx: Optional[ServiceContext]
    ) -> Dict[str, Any]:
        changes = super().to_changes(conn, current, data, ctx)
        changes.pop("completed", None)
        changes.pop("status", None)
        changes.update(
            resolve_completion(
                bool(current["completed"]),
                current["status"],
                current["completed_at"],
                data.completed,
                data.status,  # type: ignore[arg-type]
                self.clock(),
            )
        )
        return changes

    # ------------------------------------------------------------ extensions

    # PUBLIC_INTERFACE
    def toggle_completion(self, task_id: str, ctx: Optional[ServiceContext] = None) -> TaskEntity:
        """Flip ``completed``; completing stamps ``completed_at``, reopening clears it."""
        with self.logged("toggle_completion", ctx, id=task_id):
            with self.db.transaction() as conn:
                current = self._load_for_write(conn, task_id, ctx)
                changes = resolve_completion(
                    bool(current["completed"]),  # type: ignore[index]
                    current["status"],  # type: ignore[index]
                    current["completed_at"],  # type: ignore[index]
                    not bool(current["completed"]),  # type: ignore[index]
                    None,
                    self.clock(),
                )
                changes["updated_at"] = to_db(self.clock())
                self.update_row(conn, task_id, changes)
                return self.fetch_one(conn, task_id, ctx)  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    def find_by_task_list(self, task_list_id: str, ctx: Optional[ServiceContext] = None) -> List[TaskEntity]:
        return self.find_all({"task_list_id": task_list_id}, ctx)

    # PUBLIC_INTERFACE
    def find_by_scheduled_date(
        self, day: Union[date, datetime, str], ctx: Optional[ServiceContext] = None
    ) -> List[TaskEntity]:
        """Tasks scheduled on the (UTC) calendar day of ``day``."""
        try:
            moment = _parse_datetime(day)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if moment is None:
            raise ValidationError("Scheduled date is required")
        start, end = day_bounds(moment)
        return self.find_all(
            {"scheduled_from": start, "scheduled_to": end, "sort_by": "scheduled_date", "sort_order": "asc"}, ctx
        )

    # PUBLIC_INTERFACE
    def find_overdue(self, ctx: Optional[ServiceContext] = None) -> List[TaskEntity]:
        return self.find_all({"overdue": True, "sort_by": "scheduled_date", "sort_order": "asc"}, ctx)

    # PUBLIC_INTERFACE
    def search(self, text: str, ctx: Optional[ServiceContext] = None) -> List[TaskEntity]:
        if not text or not text.strip():
            raise ValidationError("Search query is required")
        return self.find_all({"search": text}, ctx)

    # PUBLIC_INTERFACE
    def find_paginated(
        self, filters: Any = None, page: int = 1, limit: int = 20, ctx: Optional[ServiceContext] = None
    ) -> Dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        parsed = self.coerce(TaskFilters, filters)
        offset = (page - 1) * limit
        total = self.count(parsed.model_copy(update={"limit": None, "offset": None}), ctx)
        items = self.find_all(parsed.model_copy(update={"limit": limit, "offset": offset}), ctx)
        return pagination_envelope(items, total, limit, offset)

    # ------------------------------------------------------------ bulk

    def _bulk_ids(self, task_ids: List[str]) -> List[str]:
        ids = list(dict.fromkeys(task_ids or []))
        if not ids:
            raise ValidationError("At least one task id is required")
        if len(ids) > self.settings.bulk_max_ids:
            raise ValidationError(f"Cannot process more than {self.settings.bulk_max_ids} tasks at once")
        return ids

    def _require_all_owned(self, conn: sqlite3.Connection, ids: List[str], user_id: str) -> None:
        row = conn.execute(
            f"SELECT COUNT(*) AS cnt FROM tasks WHERE user_id = ? AND id IN ({placeholders(len(ids))})",
            [user_id, *ids],
        ).fetchone()
        if int(row["cnt"]) != len(ids):
            raise AuthorizationError("Some tasks not found or access denied")

    # PUBLIC_INTERFACE
    def bulk_update(self, task_ids: List[str], data: Any, ctx: Optional[ServiceContext] = None) -> List[TaskEntity]:
        """
        Apply one partial update to every task in ``task_ids``.

        All ids must belong to the caller; a single foreign or missing id aborts
        the whole batch before anything is written.
        """
        user_id = self.require_user(ctx)
        ids = self._bulk_ids(task_ids)
        payload = self.coerce(TaskUpdate, data)
        with self.logged("bulk_update", ctx, count=len(ids), fields=sorted(payload.model_fields_set)):
            with self.db.transaction() as conn:
                self._require_all_owned(conn, ids, user_id)
                if payload.task_list_id is not None:
                    self._require_list(conn, payload.task_list_id, user_id)
                assignments, params = self._bulk_assignments(payload)
                if assignments:
                    conn.execute(
                        f"UPDATE tasks SET {', '.join(assignments)} "
                        f"WHERE user_id = ? AND id IN ({placeholders(len(ids))})",
                        [*params, user_id, *ids],
                    )
                rows = conn.execute(
                    f"SELECT * FROM tasks WHERE user_id = ? AND id IN ({placeholders(len(ids))})",
                    [user_id, *ids],
                ).fetchall()
                by_id = {r["id"]: self.row_to_entity(r) for r in rows}
                return self.enrich(conn, [by_id[i] for i in ids], ctx)

    def _bulk_assignments(self, data: TaskUpdate) -> Tuple[List[str], List[Any]]:
        changes = self.field_changes(data)
        changes.pop("completed", None)
        changes.pop("status", None)
        assignments = [f"{column} = ?" for column in changes]
        params: List[Any] = list(changes.values())

        completed = data.completed
        status = data.status
        if status is not None:
            if completed is not None and completed != (status == DONE):
                raise ValidationError("Task status and completion flag disagree")
            completed = status == DONE
        if completed is True:
            assignments += ["completed = 1", "status = ?", "completed_at = COALESCE(completed_at, ?)"]
            params += [DONE, to_db(self.clock())]
        elif completed is False:
            assignments += ["completed = 0", "completed_at = NULL"]
            if status is not None:
                assignments.append("status = ?")
                params.append(status)
            else:
                assignments.append(f"status = CASE WHEN status = '{DONE}' THEN '{NOT_STARTED}' ELSE status END")

        if assignments:
            assignments.append("updated_at = ?")
            params.append(to_db(self.clock()))
        return assignments, params

    # PUBLIC_INTERFACE
    def bulk_delete(self, task_ids: List[str], ctx: Optional[ServiceContext] = None) -> int:
        """Delete every task in ``task_ids`` or none of them. Returns the number deleted."""
        user_id = self.require_user(ctx)
        ids = self._bulk_ids(task_ids)
        with self.logged("bulk_delete", ctx, count=len(ids)):
            with self.db.transaction() as conn:
                self._require_all_owned(conn, ids, user_id)
                deleted = conn.execute(
                    f"DELETE FROM tasks WHERE user_id = ? AND id IN ({placeholders(len(ids))})",
                    [user_id, *ids],
                ).rowcount
        logger.info("Bulk deleted %s task(s) for %s", deleted, user_id)
        return deleted

    # ------------------------------------------------------------ statistics

    # PUBLIC_INTERFACE
    def get_stats(self, ctx: Optional[ServiceContext] = None) -> Dict[str, int]:
        user_id = self.require_user(ctx)
        now = self.clock()
        today, _ = day_bounds(now)
        month, _ = month_bounds(now.year, now.month, now.tzinfo)
        with self.logged("get_stats", ctx):
            with self.db.connect() as conn:
                row = conn.execute(
                    """
                    WITH mine AS (SELECT * FROM tasks WHERE user_id = ?)
                    SELECT
                        COUNT(*) AS total,
                        COALESCE(SUM(completed), 0) AS completed,
                        COALESCE(SUM(CASE WHEN completed = 0 AND scheduled_date < ? THEN 1 ELSE 0 END), 0) AS overdue,
                        COALESCE(SUM(CASE WHEN completed = 1 AND completed_at >= ? THEN 1 ELSE 0 END), 0) AS today,
                        COALESCE(SUM(CASE WHEN completed = 1 AND completed_at >= ? THEN 1 ELSE 0 END), 0) AS week,
                        COALESCE(SUM(CASE WHEN completed = 1 AND completed_at >= ? THEN 1 ELSE 0 END), 0) AS month
                    FROM mine
                    """,
                    (user_id, to_db(now), to_db(today), to_db(week_start(now)), to_db(month)),
                ).fetchone()
        total, completed = int(row["total"]), int(row["completed"])
        return {
            "total": total,
            "completed": completed,
            "pending": total - completed,
            "overdue": int(row["overdue"]),
            "completed_today": int(row["today"]),
            "completed_this_week": int(row["week"]),
            "completed_this_month": int(row["month"]),
        }
