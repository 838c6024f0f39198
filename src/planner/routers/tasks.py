from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..auth import get_context, get_services
from ..context import ServiceContext
from ..factory import ServiceRegistry
from ..models import Priority
from ..schemas import TaskCreate, TaskTagLink, TaskUpdate

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["tasks"],
)


class PaginationEnvelope(BaseModel):
    """
    Envelope for paginated list responses.
    """
    items: List[Dict[str, Any]] = Field(..., description="Tasks on this page")
    total: int = Field(..., description="Total number of tasks matching the query")
    limit: int = Field(..., description="Page size")
    offset: int = Field(..., description="Number of tasks skipped")
    page: int = Field(..., description="1-based page number")
    total_pages: int = Field(..., description="Number of pages")


class BulkUpdateRequest(BaseModel):
    ids: List[str] = Field(..., description="Task ids; every one must belong to the caller")
    data: TaskUpdate


class BulkDeleteRequest(BaseModel):
    ids: List[str] = Field(..., description="Task ids; every one must belong to the caller")


# PUBLIC_INTERFACE
@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    description="Create a task, attaching any inline tags in the same transaction.",
    responses={400: {"description": "Validation error"}},
)
def create_task(
    payload: TaskCreate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.tasks.create(payload, ctx)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=PaginationEnvelope,
    summary="List Tasks",
    description=(
        "List the caller's tasks.\n\n"
        "- completed, task_list_id, priority: equality filters\n"
        "- scheduled_from / scheduled_to: inclusive bounds on the scheduled date\n"
        "- q: case-insensitive search on title and clean title\n"
        "- tag: tag name, repeatable; tasks with any of them match\n"
        "- overdue: scheduled in the past and not completed\n"
        "- sort_by: created_at, updated_at, scheduled_date, priority or title; order: asc or desc"
    ),
)
def list_tasks(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    completed: Optional[bool] = Query(None),
    task_list_id: Optional[str] = Query(None),
    priority: Optional[Priority] = Query(None),
    scheduled_from: Optional[str] = Query(None),
    scheduled_to: Optional[str] = Query(None),
    q: Optional[str] = Query(None, description="Search text"),
    tag: Optional[List[str]] = Query(None),
    overdue: Optional[bool] = Query(None),
    sort_by: str = Query("created_at"),
    order: str = Query("desc"),
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    if order.strip().lower() not in {"asc", "desc"}:
        raise HTTPException(status_code=400, detail="order must be 'asc' or 'desc'")
    filters = {
        "completed": completed,
        "task_list_id": task_list_id,
        "priority": priority,
        "scheduled_from": scheduled_from,
        "scheduled_to": scheduled_to,
        "search": q,
        "tags": tag,
        "overdue": overdue,
        "sort_by": sort_by,
        "sort_order": order,
    }
    return services.tasks.find_paginated(filters, page=page, limit=limit, ctx=ctx)


# PUBLIC_INTERFACE
@router.get("/overdue", summary="Overdue Tasks")
def overdue_tasks(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.tasks.find_overdue(ctx)


# PUBLIC_INTERFACE
@router.get("/stats", summary="Task Statistics")
def task_stats(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.tasks.get_stats(ctx)


# PUBLIC_INTERFACE
@router.post(
    "/bulk-update",
    summary="Bulk Update Tasks",
    description="Apply one partial update to many tasks. One foreign or missing id rejects the whole batch.",
    responses={400: {"description": "Empty or oversized batch"}, 403: {"description": "Some ids not owned"}},
)
def bulk_update_tasks(
    payload: BulkUpdateRequest,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.tasks.bulk_update(payload.ids, payload.data, ctx)


# PUBLIC_INTERFACE
@router.post("/bulk-delete", summary="Bulk Delete Tasks")
def bulk_delete_tasks(
    payload: BulkDeleteRequest,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return {"deleted_count": services.tasks.bulk_delete(payload.ids, ctx)}


# PUBLIC_INTERFACE
@router.get("/{task_id}", summary="Get Task", responses={404: {"description": "Task not found"}})
def get_task(task_id: str, ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    item = services.tasks.find_by_id(task_id, ctx)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return item


# PUBLIC_INTERFACE
@router.patch("/{task_id}", summary="Update Task", responses={403: {"description": "Not found or access denied"}})
def update_task(
    task_id: str,
    payload: TaskUpdate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.tasks.update(task_id, payload, ctx)


# PUBLIC_INTERFACE
@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Task")
def delete_task(task_id: str, ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    services.tasks.delete(task_id, ctx)
    return None


# PUBLIC_INTERFACE
@router.post("/{task_id}/toggle", summary="Toggle Task Completion")
def toggle_task(task_id: str, ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.tasks.toggle_completion(task_id, ctx)


# PUBLIC_INTERFACE
@router.get("/{task_id}/tags", summary="List Task Tags")
def list_task_tags(task_id: str, ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.tags.get_task_tags(task_id, ctx)


# PUBLIC_INTERFACE
@router.put("/{task_id}/tags/{tag_id}", summary="Attach Tag")
def attach_tag(
    task_id: str,
    tag_id: str,
    payload: TaskTagLink,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.tags.attach_to_task(task_id, tag_id, payload, ctx)


# PUBLIC_INTERFACE
@router.delete("/{task_id}/tags/{tag_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Detach Tag")
def detach_tag(
    task_id: str,
    tag_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    services.tags.detach_from_task(task_id, tag_id, ctx)
    return None
