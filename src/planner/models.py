from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional, TypedDict


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TaskStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TagType(str, Enum):
    DATE = "DATE"
    TIME = "TIME"
    PRIORITY = "PRIORITY"
    LOCATION = "LOCATION"
    PERSON = "PERSON"
    LABEL = "LABEL"
    PROJECT = "PROJECT"


# Priority rank used when sorting tasks by priority.
PRIORITY_RANK = {Priority.LOW.value: 1, Priority.MEDIUM.value: 2, Priority.HIGH.value: 3}


class TaskListSummary(TypedDict):
    id: str
    name: str
    color: str


class CalendarSummary(TypedDict):
    id: str
    name: str
    color: str
    is_visible: bool


class TaskSummary(TypedDict):
    id: str
    title: str
    user_id: str


class _TaskListBase(TypedDict):
    id: str
    name: str
    color: str
    icon: Optional[str]
    description: Optional[str]
    user_id: str
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class TaskListEntity(_TaskListBase, total=False):
    """A named, colored grouping of tasks owned by one user."""

    task_count: int
    tasks: List["TaskEntity"]


class TagEntity(TypedDict, total=False):
    """
    A globally shared tag. Names are stored trimmed and lowercased.

    ``usage_count`` is only present when the caller asked for it.
    """

    id: str
    name: str
    type: str
    color: Optional[str]
    created_at: datetime
    updated_at: datetime
    usage_count: int


class TaskTagEntity(TypedDict):
    """A task-tag link joined with the tag it points at."""

    task_id: str
    tag_id: str
    name: str
    type: str
    color: Optional[str]
    value: str
    display_text: str
    icon_name: Optional[str]
    created_at: datetime


class _AttachmentBase(TypedDict):
    id: str
    file_name: str
    file_url: str
    file_type: str
    file_size: int
    thumbnail_url: Optional[str]
    task_id: str
    created_at: datetime


# PUBLIC_INTERFACE
class AttachmentEntity(_AttachmentBase, total=False):
    task: TaskSummary


class _TaskBase(TypedDict):
    id: str
    title: str
    completed: bool
    completed_at: Optional[datetime]
    scheduled_date: Optional[datetime]
    priority: str
    status: str
    original_input: Optional[str]
    clean_title: Optional[str]
    task_list_id: str
    user_id: str
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class TaskEntity(_TaskBase, total=False):
    """
    A task owned by one user and filed under exactly one of that user's task lists.

    Enriched reads add ``task_list``, ``tags`` and ``attachments``.
    """

    task_list: TaskListSummary
    tags: List[TaskTagEntity]
    attachments: List[AttachmentEntity]


class _CalendarBase(TypedDict):
    id: str
    name: str
    color: str
    description: Optional[str]
    is_visible: bool
    is_default: bool
    user_id: str
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class CalendarEntity(_CalendarBase, total=False):
    event_count: int


class _EventBase(TypedDict):
    id: str
    title: str
    description: Optional[str]
    start: datetime
    end: datetime
    all_day: bool
    location: Optional[str]
    notes: Optional[str]
    recurrence: Optional[str]
    calendar_id: str
    user_id: str
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class EventEntity(_EventBase, total=False):
    """A calendar event. Recurring events are a single master row carrying the rule."""

    calendar: CalendarSummary


class EventConflict(TypedDict):
    event: EventEntity
    overlap_start: datetime
    overlap_end: datetime
    duration_minutes: int
