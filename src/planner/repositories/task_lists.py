from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Optional

from ..cache import TaskListCache
from ..context import ServiceContext
from ..db import Database, new_id, to_db, utcnow
from ..errors import ValidationError
from ..models import TaskListEntity, TaskListSummary
from ..schemas import TaskListCreate, TaskListFilters, TaskListUpdate
from ..settings import Settings
from ..utils import round_half_up
from .base import EntityService
from .enrichment import fetch_grouped, pick
from .filters import WhereBuilder, placeholders
from .rows import task_from_row, task_list_from_row

logger = logging.getLogger(__name__)

DEFAULT_LIST_NAME = "General"
DEFAULT_LIST_COLOR = "#8B5CF6"
DEFAULT_LIST_DESCRIPTION = "Default task list"
TASKS_PER_LIST_PREVIEW = 10


# PUBLIC_INTERFACE
class TaskListService(EntityService[TaskListEntity, TaskListCreate, TaskListUpdate, TaskListFilters]):
    """
    Task lists, plus the read-through cache of each user's full list
    collection that task enrichment relies on.  Every write here evicts the
    writer's cache entry.
    """

    table_name = "task_lists"
    entity_name = "Task list"
    create_model = TaskListCreate
    update_model = TaskListUpdate
    filter_model = TaskListFilters
    default_order = "ORDER BY name ASC, id ASC"
    nullable_fields = frozenset({"icon", "description"})

    def __init__(self, db: Database, cache: TaskListCache, settings: Optional[Settings] = None) -> None:
        super().__init__(db, settings)
        self.cache = cache

    def row_to_entity(self, row: sqlite3.Row) -> TaskListEntity:
        return task_list_from_row(row)

    def apply_filters(self, where: WhereBuilder, filters: TaskListFilters, ctx: Optional[ServiceContext]) -> None:
        where.ilike(("name", "description"), filters.search)
        if filters.has_active_tasks is not None:
            active = (
                "EXISTS (SELECT 1 FROM tasks t WHERE t.task_list_id = task_lists.id "
                "AND t.user_id = task_lists.user_id AND t.completed = 0)"
            )
            where.add(active if filters.has_active_tasks else f"NOT {active}")

    def enrich(
        self, conn: sqlite3.Connection, entities: List[TaskListEntity], ctx: Optional[ServiceContext]
    ) -> List[TaskListEntity]:
        if not entities:
            return entities
        counts = fetch_grouped(
            conn,
            "SELECT task_list_id, COUNT(*) AS cnt FROM tasks WHERE task_list_id IN ({keys}) GROUP BY task_list_id",
            (e["id"] for e in entities),
            "task_list_id",
        )
        for entity in entities:
            rows = counts.get(entity["id"]) or []
            entity["task_count"] = int(rows[0]["cnt"]) if rows else 0
        return entities

    # ------------------------------------------------------------ validation

    def _name_taken(
        self, conn: sqlite3.Connection, user_id: str, name: str, exclude_id: Optional[str] = None
    ) -> bool:
        sql = "SELECT 1 FROM task_lists WHERE user_id = ? AND LOWER(name) = LOWER(?)"
        params: List[Any] = [user_id, name]
        if exclude_id is not None:
            sql += " AND id <> ?"
            params.append(exclude_id)
        return conn.execute(sql, params).fetchone() is not None

    def validate_create(self, conn: sqlite3.Connection, data: TaskListCreate, ctx: Optional[ServiceContext]) -> None:
        if self._name_taken(conn, self.require_user(ctx), data.name):
            raise ValidationError("Task list name already exists")

    def to_insert(self, conn: sqlite3.Connection, data: TaskListCreate, ctx: Optional[ServiceContext]) -> Dict[str, Any]:
        return {"name": data.name, "color": data.color, "icon": data.icon, "description": data.description}

    def validate_update(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: TaskListUpdate, ctx: Optional[ServiceContext]
    ) -> None:
        if data.name is not None and self._name_taken(conn, current["user_id"], data.name, exclude_id=current["id"]):
            raise ValidationError("Task list name already exists")

    def before_delete(self, conn: sqlite3.Connection, current: sqlite3.Row, ctx: Optional[ServiceContext]) -> None:
        user_id = current["user_id"]
        remaining = conn.execute(
            "SELECT id, name FROM task_lists WHERE user_id = ? AND id <> ? ORDER BY created_at ASC, id ASC",
            (user_id, current["id"]),
        ).fetchall()
        if not remaining:
            raise ValidationError("Cannot delete the only task list")

        fallback = next((r for r in remaining if r["name"] == DEFAULT_LIST_NAME), remaining[0])
        moved = conn.execute(
            "UPDATE tasks SET task_list_id = ?, updated_at = ? WHERE user_id = ? AND task_list_id = ?",
            (fallback["id"], to_db(utcnow()), user_id, current["id"]),
        ).rowcount
        logger.info("Reassigned %s task(s) from list %s to %s", moved, current["id"], fallback["id"])

    def after_write(self, ctx: Optional[ServiceContext]) -> None:
        if ctx is not None:
            self.cache.invalidate_user(ctx.user_id)

    # ------------------------------------------------------------ cache

    def load_user_lists(self, conn: sqlite3.Connection, user_id: str) -> List[TaskListEntity]:
        """Return the user's whole list collection, from the cache when present."""
        cached = self.cache.get_for_user(user_id)
        if cached is not None:
            return cached
        rows = conn.execute(
            "SELECT * FROM task_lists WHERE user_id = ? ORDER BY name ASC, id ASC", (user_id,)
        ).fetchall()
        lists = [task_list_from_row(r) for r in rows]
        self.cache.set_for_user(user_id, lists)
        return lists

    def summaries_for(
        self, conn: sqlite3.Connection, user_id: str, ids: Iterable[str]
    ) -> Dict[str, TaskListSummary]:
        wanted = set(ids)
        return {
            t["id"]: pick(t, "id", "name", "color")  # type: ignore[misc]
            for t in self.load_user_lists(conn, user_id)
            if t["id"] in wanted
        }

    # ------------------------------------------------------------ extensions

    # PUBLIC_INTERFACE
    def get_default(self, ctx: Optional[ServiceContext] = None) -> TaskListEntity:
        """
        Return the user's "General" list, else their oldest list. A user with
        no lists gets a new "General" list.
        """
        user_id = self.require_user(ctx)
        created = False
        with self.logged("get_default", ctx):
            with self.db.transaction() as conn:
                row = conn.execute(
                    "SELECT * FROM task_lists WHERE user_id = ? ORDER BY name = ? DESC, created_at ASC, id ASC LIMIT 1",
                    (user_id, DEFAULT_LIST_NAME),
                ).fetchone()
                if row is None:
                    list_id = new_id()
                    self.insert_row(
                        conn,
                        {
                            "id": list_id,
                            "name": DEFAULT_LIST_NAME,
                            "color": DEFAULT_LIST_COLOR,
                            "description": DEFAULT_LIST_DESCRIPTION,
                            "user_id": user_id,
                            **self.timestamps(),
                        },
                    )
                    created = True
                    row = conn.execute("SELECT * FROM task_lists WHERE id = ?", (list_id,)).fetchone()
                entity = self.enrich(conn, [self.row_to_entity(row)], ctx)[0]
            if created:
                self.after_write(ctx)
            return entity

    # PUBLIC_INTERFACE
    def get_with_task_count(self, ctx: Optional[ServiceContext] = None) -> List[TaskListEntity]:
        return self.find_all(None, ctx)

    # PUBLIC_INTERFACE
    def get_with_tasks(
        self, ctx: Optional[ServiceContext] = None, per_list: int = TASKS_PER_LIST_PREVIEW
    ) -> List[TaskListEntity]:
        """Each list with its ``per_list`` most recent tasks under ``tasks``."""
        user_id = self.require_user(ctx)
        with self.logged("get_with_tasks", ctx):
            with self.db.connect() as conn:
                lists = self.select(conn, TaskListFilters(), ctx)
                rows = conn.execute(
                    """
                    SELECT * FROM (
                        SELECT t.*, ROW_NUMBER() OVER (
                            PARTITION BY t.task_list_id ORDER BY t.created_at DESC, t.id ASC
                        ) AS rn
                        FROM tasks t
                        WHERE t.user_id = ?
                    ) WHERE rn <= ?
                    """,
                    (user_id, per_list),
                ).fetchall()
        by_list: Dict[str, List[Any]] = {}
        for row in rows:
            by_list.setdefault(row["task_list_id"], []).append(task_from_row(row))
        for entity in lists:
            entity["tasks"] = by_list.get(entity["id"], [])
        return lists

    # PUBLIC_INTERFACE
    def reorder(self, task_list_ids: List[str], ctx: Optional[ServiceContext] = None) -> List[TaskListEntity]:
        """Validate that every id belongs to the caller and return the lists in that order."""
        user_id = self.require_user(ctx)
        ids = list(dict.fromkeys(task_list_ids))
        with self.logged("reorder", ctx, ids=ids):
            if not ids:
                return []
            with self.db.connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM task_lists WHERE user_id = ? AND id IN ({placeholders(len(ids))})",
                    [user_id, *ids],
                ).fetchall()
                if len(rows) != len(ids):
                    raise ValidationError("Some task lists not found or access denied")
                by_id = {r["id"]: self.row_to_entity(r) for r in rows}
                return self.enrich(conn, [by_id[i] for i in ids], ctx)

    # PUBLIC_INTERFACE
    def get_statistics(self, ctx: Optional[ServiceContext] = None) -> Dict[str, Any]:
        user_id = self.require_user(ctx)
        with self.logged("get_statistics", ctx):
            with self.db.connect() as conn:
                lists = conn.execute(
                    "SELECT COUNT(*) AS cnt FROM task_lists WHERE user_id = ?", (user_id,)
                ).fetchone()["cnt"]
                totals = conn.execute(
                    "SELECT COUNT(*) AS total, COALESCE(SUM(completed), 0) AS done FROM tasks WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
        total_tasks = int(totals["total"])
        completed = int(totals["done"])
        return {
            "total_lists": int(lists),
            "total_tasks": total_tasks,
            "completed_tasks": completed,
            "pending_tasks": total_tasks - completed,
            "average_tasks_per_list": round_half_up(total_tasks / lists, 2) if lists else 0,
        }
