from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Priority, TagType, TaskStatus

# Incoming instants may be a date, a datetime or an ISO8601 string
DateTimeInput = Union[date, datetime, str]

HEX_COLOR_RE = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")
HEX_COLOR_MESSAGE = "Invalid color format. Use hex format (#RRGGBB)"

SORT_FIELDS = ("created_at", "updated_at", "scheduled_date", "priority", "title")


def _parse_datetime(value: Optional[DateTimeInput]) -> Optional[datetime]:
    """
    Normalize a date/datetime/ISO string into an aware UTC datetime.
    - Dates (or date-only strings) become midnight UTC.
    - Naive datetimes are taken as UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            try:
                d = date.fromisoformat(s)
            except ValueError as e:
                raise ValueError(
                    "Invalid date format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e
            parsed = datetime(d.year, d.month, d.day)
    else:
        raise ValueError("Invalid type for date; expected date, datetime, or ISO8601 string.")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _strip_required(v: Optional[str], message: str) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not s:
        raise ValueError(message)
    return s


def _check_color(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not HEX_COLOR_RE.match(v):
        raise ValueError(HEX_COLOR_MESSAGE)
    return v


def _check_tag_type(v: Any) -> Any:
    if v is None or isinstance(v, TagType):
        return v
    s = str(v).strip().upper()
    if s not in TagType.__members__:
        raise ValueError("Invalid tag type")
    return s


class _Input(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)


# ---------------------------------------------------------------- tasks


# PUBLIC_INTERFACE
class TaskTagInput(_Input):
    """A tag to attach while creating a task; the tag is found or created by name."""

    type: TagType = Field(..., description="Tag type")
    name: str = Field(..., description="Tag name, matched case-insensitively", min_length=1, max_length=100)
    value: str = Field(..., description="Per-link value")
    display_text: str = Field(..., description="Per-link display text")
    icon_name: Optional[str] = Field(default=None, description="Optional icon for this link")
    color: Optional[str] = Field(default=None, description="Tag color when the tag is created")

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return _strip_required(v, "Tag name is required").lower()  # type: ignore[union-attr]

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_color(v)

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v: Any) -> Any:
        return _check_tag_type(v)


# PUBLIC_INTERFACE
class TaskCreate(_Input):
    """
    Schema for creating a new task. Without ``task_list_id`` the task is
    filed under the user's default list.
    """

    model_config = ConfigDict(
        extra="ignore",
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "priority": "HIGH",
                "scheduled_date": "2025-02-01",
                "tags": [{"type": "LABEL", "name": "errands", "value": "errands", "display_text": "Errands"}],
            }
        },
    )

    title: str = Field(..., description="Task title", max_length=500)
    priority: Priority = Field(default=Priority.MEDIUM, description="Task priority")
    scheduled_date: Optional[datetime] = Field(default=None, description="Optional scheduled date/time")
    task_list_id: Optional[str] = Field(default=None, description="Owning task list")
    completed: bool = Field(default=False, description="Completion status flag")
    original_input: Optional[str] = Field(default=None, description="Raw text the task was parsed from")
    clean_title: Optional[str] = Field(default=None, description="Title with tag tokens removed")
    tags: List[TaskTagInput] = Field(default_factory=list, description="Tags to attach on creation")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _strip_required(v, "Task title is required")  # type: ignore[return-value]

    @field_validator("scheduled_date", mode="before")
    @classmethod
    def parse_scheduled_date(cls, v: Optional[DateTimeInput]) -> Optional[datetime]:
        return _parse_datetime(v)


# PUBLIC_INTERFACE
class TaskUpdate(_Input):
    """
    Partial task update. Only fields present in the payload change; an
    explicit null clears a nullable field.
    """

    title: Optional[str] = Field(default=None, max_length=500)
    completed: Optional[bool] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    scheduled_date: Optional[datetime] = None
    task_list_id: Optional[str] = None
    original_input: Optional[str] = None
    clean_title: Optional[str] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _strip_required(v, "Task title cannot be empty")

    @field_validator("scheduled_date", mode="before")
    @classmethod
    def parse_scheduled_date(cls, v: Optional[DateTimeInput]) -> Optional[datetime]:
        return _parse_datetime(v)


# PUBLIC_INTERFACE
class TaskFilters(_Input):
    completed: Optional[bool] = None
    task_list_id: Optional[str] = None
    priority: Optional[Priority] = None
    scheduled_from: Optional[datetime] = None
    scheduled_to: Optional[datetime] = None
    search: Optional[str] = None
    tags: Optional[List[str]] = Field(default=None, description="Tag names; tasks carrying any of them match")
    overdue: Optional[bool] = None
    sort_by: str = Field(default="created_at", description=f"One of {', '.join(SORT_FIELDS)}")
    sort_order: str = Field(default="desc", description="asc or desc")
    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)

    @field_validator("scheduled_from", "scheduled_to", mode="before")
    @classmethod
    def parse_bounds(cls, v: Optional[DateTimeInput]) -> Optional[datetime]:
        return _parse_datetime(v)


# ---------------------------------------------------------------- task lists


# PUBLIC_INTERFACE
class TaskListCreate(_Input):
    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={"example": {"name": "Work", "color": "#FF5722", "description": "Office tasks"}},
    )

    name: str = Field(..., description="List name, unique per user", max_length=100)
    color: str = Field(default="#8B5CF6", description="Hex color")
    icon: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _strip_required(v, "Task list name is required")  # type: ignore[return-value]

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        return _check_color(v)  # type: ignore[return-value]


# PUBLIC_INTERFACE
class TaskListUpdate(_Input):
    name: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = None
    icon: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_required(v, "Task list name cannot be empty")

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_color(v)


class TaskListFilters(_Input):
    search: Optional[str] = None
    has_active_tasks: Optional[bool] = None


# ---------------------------------------------------------------- calendars


# PUBLIC_INTERFACE
class CalendarCreate(_Input):
    name: str = Field(..., max_length=100)
    color: str = Field(default="#3B82F6")
    description: Optional[str] = None
    is_visible: bool = True
    is_default: bool = False

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _strip_required(v, "Calendar name is required")  # type: ignore[return-value]

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        return _check_color(v)  # type: ignore[return-value]


# PUBLIC_INTERFACE
class CalendarUpdate(_Input):
    name: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = None
    description: Optional[str] = None
    is_visible: Optional[bool] = None
    is_default: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_required(v, "Calendar name cannot be empty")

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_color(v)


class CalendarFilters(_Input):
    is_visible: Optional[bool] = None
    is_default: Optional[bool] = None
    search: Optional[str] = None


# ---------------------------------------------------------------- events


# PUBLIC_INTERFACE
class EventCreate(_Input):
    """
    Schema for creating an event. Cross-field rules (start before end,
    recurrence format) are checked by the event service.
    """

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "title": "Standup",
                "start": "2025-02-03T10:00:00Z",
                "end": "2025-02-03T10:15:00Z",
                "calendar_id": "b0c1...",
                "recurrence": "RRULE:FREQ=DAILY;COUNT=5",
            }
        },
    )

    title: str = Field(default="", max_length=200)
    description: Optional[str] = None
    start: datetime
    end: datetime
    all_day: bool = False
    location: Optional[str] = None
    notes: Optional[str] = None
    recurrence: Optional[str] = None
    calendar_id: str

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return v.strip()

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_instant(cls, v: DateTimeInput) -> Optional[datetime]:
        return _parse_datetime(v)


# PUBLIC_INTERFACE
class EventUpdate(_Input):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    all_day: Optional[bool] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    recurrence: Optional[str] = None
    calendar_id: Optional[str] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_instant(cls, v: Optional[DateTimeInput]) -> Optional[datetime]:
        return _parse_datetime(v)


# PUBLIC_INTERFACE
class EventFilters(_Input):
    """``start``/``end`` select events whose interval touches the window."""

    calendar_id: Optional[str] = None
    calendar_ids: Optional[List[str]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    search: Optional[str] = None
    all_day: Optional[bool] = None
    has_recurrence: Optional[bool] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_bounds(cls, v: Optional[DateTimeInput]) -> Optional[datetime]:
        return _parse_datetime(v)


# ---------------------------------------------------------------- tags


# PUBLIC_INTERFACE
class TagCreate(_Input):
    name: str = Field(..., max_length=100)
    type: TagType
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return _strip_required(v, "Tag name is required").lower()  # type: ignore[union-attr]

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_color(v)

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v: Any) -> Any:
        return _check_tag_type(v)


# PUBLIC_INTERFACE
class TagUpdate(_Input):
    name: Optional[str] = Field(default=None, max_length=100)
    type: Optional[TagType] = None
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: Optional[str]) -> Optional[str]:
        s = _strip_required(v, "Tag name cannot be empty")
        return s.lower() if s is not None else s

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_color(v)

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v: Any) -> Any:
        return _check_tag_type(v)


class TagFilters(_Input):
    type: Optional[TagType] = None
    search: Optional[str] = None
    color: Optional[str] = None
    has_active_tasks: Optional[bool] = None
    unused: Optional[bool] = None
    min_usage_count: Optional[int] = Field(default=None, ge=0)
    with_usage_count: bool = False


# PUBLIC_INTERFACE
class TaskTagLink(_Input):
    """Per-link data carried by a task-tag link."""

    value: str
    display_text: str
    icon_name: Optional[str] = None


class TaskTagLinkUpdate(_Input):
    value: Optional[str] = None
    display_text: Optional[str] = None
    icon_name: Optional[str] = None


# ---------------------------------------------------------------- attachments


# PUBLIC_INTERFACE
class AttachmentCreate(_Input):
    file_name: str = Field(..., max_length=255)
    file_url: str
    file_type: str = Field(..., description="MIME type")
    file_size: int = Field(..., gt=0, description="Size in bytes")
    task_id: str
    thumbnail_url: Optional[str] = None

    @field_validator("file_name", "file_url")
    @classmethod
    def validate_required(cls, v: str) -> str:
        return _strip_required(v, "File name and URL are required")  # type: ignore[return-value]

    @field_validator("file_type")
    @classmethod
    def normalize_type(cls, v: str) -> str:
        return v.strip().lower()


class AttachmentUpdate(_Input):
    file_name: Optional[str] = Field(default=None, max_length=255)
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = Field(default=None, gt=0)
    thumbnail_url: Optional[str] = None

    @field_validator("file_name", "file_url")
    @classmethod
    def validate_not_empty(cls, v: Optional[str]) -> Optional[str]:
        return _strip_required(v, "File name and URL cannot be empty")

    @field_validator("file_type")
    @classmethod
    def normalize_type(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v is not None else v


class AttachmentFilters(_Input):
    task_id: Optional[str] = None
    file_type: Optional[str] = None
    search: Optional[str] = None
    min_size: Optional[int] = Field(default=None, ge=0)
    max_size: Optional[int] = Field(default=None, ge=0)
    limit: Optional[int] = Field(default=None, ge=0)
