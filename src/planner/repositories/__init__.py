"""Entity services over the SQLite store."""

from .attachments import AttachmentService
from .base import EntityService
from .calendars import CalendarService
from .events import EventService
from .tags import TagService
from .task_lists import TaskListService
from .tasks import TaskService

__all__ = [
    "AttachmentService",
    "CalendarService",
    "EntityService",
    "EventService",
    "TagService",
    "TaskListService",
    "TaskService",
]
