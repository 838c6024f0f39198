from __future__ import annotations

from typing import Any, Dict, Optional

import pytest

from planner import ServiceContext, build_services
from planner.settings import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(sqlite_db_path=str(tmp_path / "planner.db"))


@pytest.fixture
def services(settings):
    return build_services(settings)


@pytest.fixture
def ctx() -> ServiceContext:
    return ServiceContext(user_id="user-1", request_id="req-1")


@pytest.fixture
def other_ctx() -> ServiceContext:
    return ServiceContext(user_id="user-2", request_id="req-2")


def make_list(services, ctx, name: str = "Work", **extra: Any) -> Dict[str, Any]:
    return services.task_lists.create({"name": name, **extra}, ctx)


def make_task(services, ctx, title: str = "Task", task_list_id: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"title": title, **extra}
    if task_list_id is not None:
        payload["task_list_id"] = task_list_id
    return services.tasks.create(payload, ctx)


def make_calendar(services, ctx, name: str = "Personal", **extra: Any) -> Dict[str, Any]:
    return services.calendars.create({"name": name, **extra}, ctx)


def make_event(services, ctx, calendar_id: str, start: str, end: str, title: str = "Event", **extra: Any):
    return services.events.create(
        {"title": title, "start": start, "end": end, "calendar_id": calendar_id, **extra}, ctx
    )
