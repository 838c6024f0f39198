from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Union

from ..context import ServiceContext
from ..db import new_id, to_db, utcnow
from ..errors import ValidationError
from ..models import TagEntity, TaskTagEntity
from ..schemas import TagCreate, TagFilters, TagUpdate, TaskTagLink, TaskTagLinkUpdate
from .base import EntityService, db_value
from .enrichment import fetch_grouped
from .filters import WhereBuilder, placeholders
from .rows import tag_from_row, task_tag_from_row

logger = logging.getLogger(__name__)

_USAGE = "(SELECT COUNT(*) FROM task_tags tt WHERE tt.tag_id = tags.id)"


# PUBLIC_INTERFACE
class TagService(EntityService[TagEntity, TagCreate, TagUpdate, TagFilters]):
    """
    Tags are shared by all users; names are unique once trimmed and
    lowercased.  Task-tag links are managed here too, always checked
    against the caller's ownership of the task.
    """

    table_name = "tags"
    entity_name = "Tag"
    create_model = TagCreate
    update_model = TagUpdate
    filter_model = TagFilters
    owner_column = None
    default_order = "ORDER BY type ASC, name ASC"
    nullable_fields = frozenset({"color"})

    def row_to_entity(self, row: sqlite3.Row) -> TagEntity:
        return tag_from_row(row)

    def apply_filters(self, where: WhereBuilder, filters: TagFilters, ctx: Optional[ServiceContext]) -> None:
        where.eq("type", filters.type)
        where.ilike(("name",), filters.search)
        where.eq("color", filters.color)
        if filters.has_active_tasks is not None:
            active = (
                "EXISTS (SELECT 1 FROM task_tags tt JOIN tasks t ON t.id = tt.task_id "
                "WHERE t.user_id = ? AND tt.tag_id = tags.id AND t.completed = 0)"
            )
            where.add(active if filters.has_active_tasks else f"NOT {active}", self.require_user(ctx))
        if filters.unused:
            where.add("NOT EXISTS (SELECT 1 FROM task_tags tt WHERE tt.tag_id = tags.id)")
        if filters.min_usage_count is not None:
            where.add(f"{_USAGE} >= ?", filters.min_usage_count)

    def select(self, conn: sqlite3.Connection, filters: TagFilters, ctx: Optional[ServiceContext]) -> List[TagEntity]:
        tags = super().select(conn, filters, ctx)
        if filters.with_usage_count:
            self._attach_usage(conn, tags)
        return tags

    def _attach_usage(self, conn: sqlite3.Connection, tags: List[TagEntity]) -> List[TagEntity]:
        counts = fetch_grouped(
            conn,
            "SELECT tag_id, COUNT(*) AS cnt FROM task_tags WHERE tag_id IN ({keys}) GROUP BY tag_id",
            (t["id"] for t in tags),
            "tag_id",
        )
        for tag in tags:
            rows = counts.get(tag["id"]) or []
            tag["usage_count"] = int(rows[0]["cnt"]) if rows else 0
        return tags

    # ------------------------------------------------------------ validation

    def _name_taken(self, conn: sqlite3.Connection, name: str, exclude_id: Optional[str] = None) -> bool:
        sql = "SELECT 1 FROM tags WHERE name = ?"
        params: List[Any] = [name]
        if exclude_id is not None:
            sql += " AND id <> ?"
            params.append(exclude_id)
        return conn.execute(sql, params).fetchone() is not None

    def validate_create(self, conn: sqlite3.Connection, data: TagCreate, ctx: Optional[ServiceContext]) -> None:
        if self._name_taken(conn, data.name):
            raise ValidationError("Tag name already exists")

    def to_insert(self, conn: sqlite3.Connection, data: TagCreate, ctx: Optional[ServiceContext]) -> Dict[str, Any]:
        return {"name": data.name, "type": db_value(data.type), "color": data.color}

    def validate_update(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: TagUpdate, ctx: Optional[ServiceContext]
    ) -> None:
        if data.name is not None and self._name_taken(conn, data.name, exclude_id=current["id"]):
            raise ValidationError("Tag name already exists")

    # ------------------------------------------------------------ find or create

    def find_or_create_in(
        self, conn: sqlite3.Connection, name: str, tag_type: Any, color: Optional[str] = None
    ) -> str:
        """Id of the tag named ``name``, inserting it on ``conn`` when missing."""
        normalized = name.strip().lower()
        row = conn.execute("SELECT id FROM tags WHERE name = ?", (normalized,)).fetchone()
        if row is not None:
            return row["id"]
        tag_id = new_id()
        self.insert_row(
            conn,
            {"id": tag_id, "name": normalized, "type": db_value(tag_type), "color": color, **self.timestamps()},
        )
        return tag_id

    # PUBLIC_INTERFACE
    def find_or_create(self, data: Any, ctx: Optional[ServiceContext] = None) -> TagEntity:
        """Return the tag with this (normalized) name, creating it when absent."""
        payload = self.coerce(TagCreate, data)
        with self.logged("find_or_create", ctx, name=payload.name):
            with self.db.transaction() as conn:
                tag_id = self.find_or_create_in(conn, payload.name, payload.type, payload.color)
                return self.fetch_one(conn, tag_id, ctx)  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    def find_by_type(self, tag_type: str, ctx: Optional[ServiceContext] = None) -> List[TagEntity]:
        return self.find_all({"type": tag_type}, ctx)

    # PUBLIC_INTERFACE
    def find_by_user(self, user_id: str, ctx: Optional[ServiceContext] = None) -> List[TagEntity]:
        """Tags linked to at least one of ``user_id``'s tasks."""
        with self.logged("find_by_user", ctx, user=user_id):
            with self.db.connect() as conn:
                rows = conn.execute(
                    """
                    SELECT tags.* FROM tags
                    WHERE EXISTS (
                        SELECT 1 FROM task_tags tt JOIN tasks t ON t.id = tt.task_id
                        WHERE t.user_id = ? AND tt.tag_id = tags.id
                    )
                    ORDER BY type ASC, name ASC
                    """,
                    (user_id,),
                ).fetchall()
                return [self.row_to_entity(r) for r in rows]

    # ------------------------------------------------------------ task links

    def _require_task(self, conn: sqlite3.Connection, task_id: str, ctx: Optional[ServiceContext]) -> None:
        row = conn.execute(
            "SELECT 1 FROM tasks WHERE user_id = ? AND id = ?", (self.require_user(ctx), task_id)
        ).fetchone()
        if row is None:
            raise ValidationError("Task not found or access denied")

    def link_in(
        self,
        conn: sqlite3.Connection,
        task_id: str,
        tag_id: str,
        value: str,
        display_text: str,
        icon_name: Optional[str] = None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO task_tags (task_id, tag_id, value, display_text, icon_name, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (task_id, tag_id) DO UPDATE SET
                value = excluded.value,
                display_text = excluded.display_text,
                icon_name = excluded.icon_name
            """,
            (task_id, tag_id, value, display_text, icon_name, to_db(utcnow())),
        )

    def _links(self, conn: sqlite3.Connection, task_id: str, tag_id: Optional[str] = None) -> List[TaskTagEntity]:
        sql = (
            "SELECT tt.*, tg.name AS tag_name, tg.type AS tag_type, tg.color AS tag_color "
            "FROM task_tags tt JOIN tags tg ON tg.id = tt.tag_id WHERE tt.task_id = ?"
        )
        params: List[Any] = [task_id]
        if tag_id is not None:
            sql += " AND tt.tag_id = ?"
            params.append(tag_id)
        rows = conn.execute(sql + " ORDER BY tg.type ASC, tg.name ASC", params).fetchall()
        return [task_tag_from_row(r) for r in rows]

    # PUBLIC_INTERFACE
    def attach_to_task(
        self, task_id: str, tag_id: str, link: Any, ctx: Optional[ServiceContext] = None
    ) -> TaskTagEntity:
        """Link a tag to one of the caller's tasks, replacing the per-link data if already linked."""
        payload = self.coerce(TaskTagLink, link)
        with self.logged("attach_to_task", ctx, task=task_id, tag=tag_id):
            with self.db.transaction() as conn:
                self._require_task(conn, task_id, ctx)
                if conn.execute("SELECT 1 FROM tags WHERE id = ?", (tag_id,)).fetchone() is None:
                    raise ValidationError("Tag not found")
                self.link_in(conn, task_id, tag_id, payload.value, payload.display_text, payload.icon_name)
                return self._links(conn, task_id, tag_id)[0]

    # PUBLIC_INTERFACE
    def detach_from_task(self, task_id: str, tag_id: str, ctx: Optional[ServiceContext] = None) -> bool:
        with self.logged("detach_from_task", ctx, task=task_id, tag=tag_id):
            with self.db.transaction() as conn:
                self._require_task(conn, task_id, ctx)
                cur = conn.execute("DELETE FROM task_tags WHERE task_id = ? AND tag_id = ?", (task_id, tag_id))
                return cur.rowcount > 0

    # PUBLIC_INTERFACE
    def get_task_tags(self, task_id: str, ctx: Optional[ServiceContext] = None) -> List[TaskTagEntity]:
        with self.logged("get_task_tags", ctx, task=task_id):
            with self.db.connect() as conn:
                self._require_task(conn, task_id, ctx)
                return self._links(conn, task_id)

    # PUBLIC_INTERFACE
    def update_task_tag(
        self, task_id: str, tag_id: str, data: Any, ctx: Optional[ServiceContext] = None
    ) -> Optional[TaskTagEntity]:
        payload = self.coerce(TaskTagLinkUpdate, data)
        with self.logged("update_task_tag", ctx, task=task_id, tag=tag_id):
            with self.db.transaction() as conn:
                self._require_task(conn, task_id, ctx)
                changes = {f: getattr(payload, f) for f in payload.model_fields_set}
                changes = {k: v for k, v in changes.items() if v is not None or k == "icon_name"}
                if changes:
                    conn.execute(
                        f"UPDATE task_tags SET {', '.join(f'{c} = ?' for c in changes)} "
                        "WHERE task_id = ? AND tag_id = ?",
                        [*changes.values(), task_id, tag_id],
                    )
                links = self._links(conn, task_id, tag_id)
                return links[0] if links else None

    # ------------------------------------------------------------ maintenance

    # PUBLIC_INTERFACE
    def cleanup_unused(self, ctx: Optional[ServiceContext] = None) -> Dict[str, Any]:
        """Delete every tag that no task links to."""
        with self.logged("cleanup_unused", ctx):
            with self.db.transaction() as conn:
                ids = [
                    r["id"]
                    for r in conn.execute(
                        "SELECT id FROM tags WHERE NOT EXISTS (SELECT 1 FROM task_tags tt WHERE tt.tag_id = tags.id)"
                    ).fetchall()
                ]
                if ids:
                    conn.execute(f"DELETE FROM tags WHERE id IN ({placeholders(len(ids))})", ids)
        logger.info("Removed %s unused tag(s)", len(ids))
        return {"deleted_count": len(ids), "deleted_tag_ids": ids}

    # PUBLIC_INTERFACE
    def merge(
        self, source_ids: Union[str, List[str]], target_id: str, ctx: Optional[ServiceContext] = None
    ) -> TagEntity:
        """
        Fold ``source_ids`` into ``target_id``.

        Links are repointed to the target with their value, display text and
        icon untouched.  Where a task already carries the target tag, the
        target's own link is kept and the source link is dropped.  The source
        tags are then deleted.  Everything happens in one transaction.
        """
        sources = [source_ids] if isinstance(source_ids, str) else list(dict.fromkeys(source_ids or []))
        if not sources:
            raise ValidationError("At least one source tag is required")
        if target_id in sources:
            raise ValidationError("Cannot merge tag with itself")

        marks = placeholders(len(sources))
        with self.logged("merge", ctx, sources=sources, target=target_id):
            with self.db.transaction() as conn:
                if conn.execute("SELECT 1 FROM tags WHERE id = ?", (target_id,)).fetchone() is None:
                    raise ValidationError("Target tag not found")
                found = conn.execute(f"SELECT COUNT(*) AS cnt FROM tags WHERE id IN ({marks})", sources).fetchone()
                if int(found["cnt"]) != len(sources):
                    raise ValidationError("Some source tags not found")

                moved = conn.execute(
                    f"UPDATE OR IGNORE task_tags SET tag_id = ? WHERE tag_id IN ({marks})",
                    [target_id, *sources],
                ).rowcount
                conn.execute(f"DELETE FROM task_tags WHERE tag_id IN ({marks})", sources)
                conn.execute(f"DELETE FROM tags WHERE id IN ({marks})", sources)
                conn.execute("UPDATE tags SET updated_at = ? WHERE id = ?", (to_db(utcnow()), target_id))
                target = self._attach_usage(conn, [self.fetch_one(conn, target_id, ctx)])[0]  # type: ignore[list-item]
            self._log("merge:success", ctx, moved_links=moved, target=target_id)
            return target

    # PUBLIC_INTERFACE
    def get_statistics(self, ctx: Optional[ServiceContext] = None) -> Dict[str, Any]:
        """Total tag count, counts per type, and the most linked tags."""
        with self.logged("get_statistics", ctx):
            with self.db.connect() as conn:
                total = conn.execute("SELECT COUNT(*) AS cnt FROM tags").fetchone()["cnt"]
                by_type = conn.execute(
                    "SELECT type, COUNT(*) AS cnt FROM tags GROUP BY type ORDER BY type ASC"
                ).fetchall()
                top = conn.execute(
                    f"""
                    SELECT tags.*, {_USAGE} AS usage_count FROM tags
                    ORDER BY usage_count DESC, name ASC
                    LIMIT ?
                    """,
                    (self.settings.top_tags_limit,),
                ).fetchall()
        return {
            "total_tags": int(total),
            "tags_by_type": {r["type"]: int(r["cnt"]) for r in by_type},
            "most_used_tags": [self.row_to_entity(r) for r in top],
        }
