from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .cache import TaskListCache
from .db import Database
from .repositories import (
    AttachmentService,
    CalendarService,
    EventService,
    TagService,
    TaskListService,
    TaskService,
)
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ServiceRegistry:
    """One instance of every service, sharing a database and a task-list cache."""

    settings: Settings
    db: Database
    cache: TaskListCache
    task_lists: TaskListService
    tasks: TaskService
    tags: TagService
    calendars: CalendarService
    events: EventService
    attachments: AttachmentService


# PUBLIC_INTERFACE
def build_services(settings: Optional[Settings] = None, migrate: bool = True) -> ServiceRegistry:
    """
    Wire the services for one process. Migrations run here, before any
    request is served.
    """
    settings = settings or get_settings()
    db = Database(settings.sqlite_db_path)
    if migrate:
        version = db.migrate()
        logger.info("Database %s at schema version %s", settings.sqlite_db_path, version)

    cache = TaskListCache()
    task_lists = TaskListService(db, cache, settings)
    tags = TagService(db, settings)
    return ServiceRegistry(
        settings=settings,
        db=db,
        cache=cache,
        task_lists=task_lists,
        tasks=TaskService(db, task_lists, tags, settings),
        tags=tags,
        calendars=CalendarService(db, settings),
        events=EventService(db, settings),
        attachments=AttachmentService(db, settings),
    )
