from __future__ import annotations

import sqlite3

from ..db import from_db
from ..models import (
    AttachmentEntity,
    CalendarEntity,
    EventEntity,
    TagEntity,
    TaskEntity,
    TaskListEntity,
    TaskTagEntity,
)


def task_list_from_row(row: sqlite3.Row) -> TaskListEntity:
    return {
        "id": row["id"],
        "name": row["name"],
        "color": row["color"],
        "icon": row["icon"],
        "description": row["description"],
        "user_id": row["user_id"],
        "created_at": from_db(row["created_at"]),  # type: ignore[typeddict-item]
        "updated_at": from_db(row["updated_at"]),  # type: ignore[typeddict-item]
    }


def task_from_row(row: sqlite3.Row) -> TaskEntity:
    return {
        "id": row["id"],
        "title": row["title"],
        "completed": bool(row["completed"]),
        "completed_at": from_db(row["completed_at"]),
        "scheduled_date": from_db(row["scheduled_date"]),
        "priority": row["priority"],
        "status": row["status"],
        "original_input": row["original_input"],
        "clean_title": row["clean_title"],
        "task_list_id": row["task_list_id"],
        "user_id": row["user_id"],
        "created_at": from_db(row["created_at"]),  # type: ignore[typeddict-item]
        "updated_at": from_db(row["updated_at"]),  # type: ignore[typeddict-item]
    }


def tag_from_row(row: sqlite3.Row) -> TagEntity:
    tag: TagEntity = {
        "id": row["id"],
        "name": row["name"],
        "type": row["type"],
        "color": row["color"],
        "created_at": from_db(row["created_at"]),  # type: ignore[typeddict-item]
        "updated_at": from_db(row["updated_at"]),  # type: ignore[typeddict-item]
    }
    if "usage_count" in row.keys():
        tag["usage_count"] = int(row["usage_count"] or 0)
    return tag


def task_tag_from_row(row: sqlite3.Row) -> TaskTagEntity:
    """Row of ``task_tags`` joined with ``tags`` (tag columns prefixed ``tag_``)."""
    return {
        "task_id": row["task_id"],
        "tag_id": row["tag_id"],
        "name": row["tag_name"],
        "type": row["tag_type"],
        "color": row["tag_color"],
        "value": row["value"],
        "display_text": row["display_text"],
        "icon_name": row["icon_name"],
        "created_at": from_db(row["created_at"]),  # type: ignore[typeddict-item]
    }


def attachment_from_row(row: sqlite3.Row) -> AttachmentEntity:
    return {
        "id": row["id"],
        "file_name": row["file_name"],
        "file_url": row["file_url"],
        "file_type": row["file_type"],
        "file_size": int(row["file_size"]),
        "thumbnail_url": row["thumbnail_url"],
        "task_id": row["task_id"],
        "created_at": from_db(row["created_at"]),  # type: ignore[typeddict-item]
    }


def calendar_from_row(row: sqlite3.Row) -> CalendarEntity:
    return {
        "id": row["id"],
        "name": row["name"],
        "color": row["color"],
        "description": row["description"],
        "is_visible": bool(row["is_visible"]),
        "is_default": bool(row["is_default"]),
        "user_id": row["user_id"],
        "created_at": from_db(row["created_at"]),  # type: ignore[typeddict-item]
        "updated_at": from_db(row["updated_at"]),  # type: ignore[typeddict-item]
    }


def event_from_row(row: sqlite3.Row) -> EventEntity:
    return {
        "id": row["id"],
        "title": row["title"],
        "description": row["description"],
        "start": from_db(row["start_at"]),  # type: ignore[typeddict-item]
        "end": from_db(row["end_at"]),  # type: ignore[typeddict-item]
        "all_day": bool(row["all_day"]),
        "location": row["location"],
        "notes": row["notes"],
        "recurrence": row["recurrence"],
        "calendar_id": row["calendar_id"],
        "user_id": row["user_id"],
        "created_at": from_db(row["created_at"]),  # type: ignore[typeddict-item]
        "updated_at": from_db(row["updated_at"]),  # type: ignore[typeddict-item]
    }
