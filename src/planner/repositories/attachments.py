from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

from ..context import ServiceContext
from ..errors import AuthorizationError, ValidationError
from ..models import AttachmentEntity
from ..schemas import AttachmentCreate, AttachmentFilters, AttachmentUpdate
from ..utils import round_half_up
from .base import EntityService
from .enrichment import fetch_indexed, pick
from .filters import WhereBuilder, placeholders
from .rows import attachment_from_row

logger = logging.getLogger(__name__)

SUPPORTED_FILE_TYPES: Dict[str, List[str]] = {
    "images": ["image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml"],
    "documents": [
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/plain",
        "text/csv",
        "text/markdown",
        "application/json",
        "text/html",
        "text/css",
        "text/javascript",
        "application/x-typescript",
        "application/x-sh",
        "text/x-java-source",
        "text/x-python",
        "text/x-csrc",
        "text/x-c++src",
        "text/x-go",
        "text/x-kotlin",
        "text/x-ruby",
        "text/x-php",
        "text/x-scss",
    ],
    "audio": ["audio/mpeg", "audio/mp4", "audio/wav", "audio/webm", "audio/ogg"],
    "video": ["video/mp4", "video/webm", "video/ogg", "video/quicktime"],
    "archives": ["application/zip", "application/x-rar-compressed", "application/x-7z-compressed"],
}

MAX_LIST_LIMIT = 100
LARGEST_FILES_LIMIT = 10

_OWNED_BY = "EXISTS (SELECT 1 FROM tasks t WHERE t.id = attachments.task_id AND t.user_id = ?)"


def is_supported_file_type(file_type: str) -> bool:
    return get_file_category(file_type) is not None


def get_file_category(file_type: str) -> Optional[str]:
    normalized = (file_type or "").strip().lower()
    for category, types in SUPPORTED_FILE_TYPES.items():
        if normalized in types:
            return category
    return None


def format_file_size(size: int) -> str:
    """Human readable size, e.g. ``1.5 MB``."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    exponent = 0
    while value >= 1024 and exponent < len(units) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {units[exponent]}"


# PUBLIC_INTERFACE
class AttachmentService(EntityService[AttachmentEntity, AttachmentCreate, AttachmentUpdate, AttachmentFilters]):
    """
    File attachments on tasks.  An attachment has no owner column of its own:
    it belongs to whoever owns its task, so every owner predicate goes
    through ``tasks``.
    """

    table_name = "attachments"
    entity_name = "Attachment"
    create_model = AttachmentCreate
    update_model = AttachmentUpdate
    filter_model = AttachmentFilters
    stores_owner = False
    has_updated_at = False
    nullable_fields = frozenset({"thumbnail_url"})

    def owner_clause(self) -> str:
        return _OWNED_BY

    def owner_probe_sql(self) -> str:
        return "SELECT t.user_id AS owner_id FROM attachments a JOIN tasks t ON t.id = a.task_id WHERE a.id = ?"

    def row_to_entity(self, row: sqlite3.Row) -> AttachmentEntity:
        return attachment_from_row(row)

    def apply_filters(self, where: WhereBuilder, filters: AttachmentFilters, ctx: Optional[ServiceContext]) -> None:
        where.eq("task_id", filters.task_id)
        where.eq("file_type", filters.file_type.strip().lower() if filters.file_type else None)
        where.ilike(("file_name",), filters.search)
        if filters.min_size is not None:
            where.add("file_size >= ?", filters.min_size)
        if filters.max_size is not None:
            where.add("file_size <= ?", filters.max_size)

    def page(self, filters: AttachmentFilters) -> Tuple[str, List[Any]]:
        if filters.limit is None:
            return "", []
        return "LIMIT ?", [min(filters.limit, MAX_LIST_LIMIT)]

    def enrich(
        self, conn: sqlite3.Connection, entities: List[AttachmentEntity], ctx: Optional[ServiceContext]
    ) -> List[AttachmentEntity]:
        tasks = fetch_indexed(
            conn, "SELECT id, title, user_id FROM tasks WHERE id IN ({keys})", (a["task_id"] for a in entities)
        )
        for attachment in entities:
            row = tasks.get(attachment["task_id"])
            if row is not None:
                attachment["task"] = pick(row, "id", "title", "user_id")  # type: ignore[typeddict-item]
        return entities

    # ------------------------------------------------------------ validation

    def _check_file(self, file_type: Optional[str], file_size: Optional[int]) -> None:
        if file_size is not None and file_size > self.settings.max_file_size:
            raise ValidationError(
                f"File size exceeds maximum limit of {format_file_size(self.settings.max_file_size)}"
            )
        if file_type is not None and not is_supported_file_type(file_type):
            raise ValidationError("Unsupported file type")

    def validate_create(self, conn: sqlite3.Connection, data: AttachmentCreate, ctx: Optional[ServiceContext]) -> None:
        self._check_file(data.file_type, data.file_size)
        row = conn.execute(
            "SELECT (SELECT COUNT(*) FROM attachments a WHERE a.task_id = tasks.id) AS cnt "
            "FROM tasks WHERE user_id = ? AND id = ?",
            (self.require_user(ctx), data.task_id),
        ).fetchone()
        if row is None:
            raise ValidationError("Task not found or access denied")
        if int(row["cnt"]) >= self.settings.max_files_per_task:
            raise ValidationError(f"Maximum {self.settings.max_files_per_task} attachments per task allowed")

    def to_insert(
        self, conn: sqlite3.Connection, data: AttachmentCreate, ctx: Optional[ServiceContext]
    ) -> Dict[str, Any]:
        return {
            "file_name": data.file_name,
            "file_url": data.file_url,
            "file_type": data.file_type,
            "file_size": data.file_size,
            "thumbnail_url": data.thumbnail_url,
            "task_id": data.task_id,
        }

    def validate_update(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: AttachmentUpdate, ctx: Optional[ServiceContext]
    ) -> None:
        self._check_file(data.file_type, data.file_size)

    # ------------------------------------------------------------ extensions

    # PUBLIC_INTERFACE
    def find_by_task(self, task_id: str, ctx: Optional[ServiceContext] = None) -> List[AttachmentEntity]:
        return self.find_all({"task_id": task_id}, ctx)

    # PUBLIC_INTERFACE
    def find_by_file_type(self, file_type: str, ctx: Optional[ServiceContext] = None) -> List[AttachmentEntity]:
        return self.find_all({"file_type": file_type}, ctx)

    # PUBLIC_INTERFACE
    def find_by_category(self, category: str, ctx: Optional[ServiceContext] = None) -> List[AttachmentEntity]:
        types = SUPPORTED_FILE_TYPES.get(category)
        if types is None:
            raise ValidationError("Invalid file category")
        where = WhereBuilder(self.owner_clause(), self.require_user(ctx)).in_("file_type", types)
        where_sql, params = where.build()
        with self.logged("find_by_category", ctx, category=category):
            with self.db.connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM attachments {where_sql} {self.default_order}",
                    params,
                ).fetchall()
                return self.enrich(conn, [self.row_to_entity(r) for r in rows], ctx)

    # PUBLIC_INTERFACE
    def get_storage_stats(self, ctx: Optional[ServiceContext] = None) -> Dict[str, Any]:
        """Totals, per-type breakdown and the largest files across the caller's attachments."""
        user_id = self.require_user(ctx)
        with self.logged("get_storage_stats", ctx):
            with self.db.connect() as conn:
                totals = conn.execute(
                    f"SELECT COUNT(*) AS files, COALESCE(SUM(file_size), 0) AS size FROM attachments WHERE {_OWNED_BY}",
                    (user_id,),
                ).fetchone()
                by_type = conn.execute(
                    f"""
                    SELECT file_type, COUNT(*) AS files, COALESCE(SUM(file_size), 0) AS size
                    FROM attachments WHERE {_OWNED_BY}
                    GROUP BY file_type ORDER BY file_type ASC
                    """,
                    (user_id,),
                ).fetchall()
                largest = conn.execute(
                    f"SELECT * FROM attachments WHERE {_OWNED_BY} ORDER BY file_size DESC, id ASC LIMIT ?",
                    (user_id, LARGEST_FILES_LIMIT),
                ).fetchall()
        files, size = int(totals["files"]), int(totals["size"])
        return {
            "total_files": files,
            "total_size": size,
            "total_size_mb": round_half_up(size / (1024 * 1024), 2),
            "average_file_size": round_half_up(size / files) if files else 0,
            "files_by_type": {r["file_type"]: {"count": int(r["files"]), "size": int(r["size"])} for r in by_type},
            "largest_files": [self.row_to_entity(r) for r in largest],
        }

    # PUBLIC_INTERFACE
    def bulk_delete(self, attachment_ids: List[str], ctx: Optional[ServiceContext] = None) -> int:
        """Delete all of ``attachment_ids`` or none of them."""
        user_id = self.require_user(ctx)
        ids = list(dict.fromkeys(attachment_ids or []))
        if not ids:
            raise ValidationError("At least one attachment id is required")
        if len(ids) > self.settings.bulk_max_ids:
            raise ValidationError(f"Cannot process more than {self.settings.bulk_max_ids} attachments at once")
        marks = placeholders(len(ids))
        with self.logged("bulk_delete", ctx, count=len(ids)):
            with self.db.transaction() as conn:
                owned = conn.execute(
                    f"SELECT COUNT(*) AS cnt FROM attachments WHERE {_OWNED_BY} AND id IN ({marks})",
                    [user_id, *ids],
                ).fetchone()
                if int(owned["cnt"]) != len(ids):
                    raise AuthorizationError("Some attachments not found or access denied")
                return conn.execute(f"DELETE FROM attachments WHERE id IN ({marks})", ids).rowcount

    # PUBLIC_INTERFACE
    def get_download_url(self, attachment_id: str, ctx: Optional[ServiceContext] = None) -> str:
        with self.logged("get_download_url", ctx, id=attachment_id):
            with self.db.connect() as conn:
                row = self._load_for_write(conn, attachment_id, ctx)
                return row["file_url"]  # type: ignore[index]

    # PUBLIC_INTERFACE
    def cleanup_orphaned(self, ctx: Optional[ServiceContext] = None) -> int:
        """Remove attachments whose task no longer exists."""
        with self.logged("cleanup_orphaned", ctx):
            with self.db.transaction() as conn:
                deleted = conn.execute(
                    "DELETE FROM attachments WHERE NOT EXISTS (SELECT 1 FROM tasks t WHERE t.id = attachments.task_id)"
                ).rowcount
        logger.info("Removed %s orphaned attachment(s)", deleted)
        return deleted
