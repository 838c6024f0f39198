from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..auth import get_context, get_services
from ..context import ServiceContext
from ..factory import ServiceRegistry
from ..schemas import TaskListCreate, TaskListUpdate

router = APIRouter(
    prefix="/api/v1/task-lists",
    tags=["task-lists"],
)


class ReorderRequest(BaseModel):
    ids: List[str] = Field(..., description="Task list ids in the desired order")


# PUBLIC_INTERFACE
@router.get(
    "/",
    summary="List Task Lists",
    description="The caller's task lists, each with its task count. Served from the per-user cache when unfiltered.",
)
def list_task_lists(
    q: Optional[str] = Query(None, description="Search name and description"),
    has_active_tasks: Optional[bool] = Query(None),
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.task_lists.find_all({"search": q, "has_active_tasks": has_active_tasks}, ctx)


# PUBLIC_INTERFACE
@router.post("/", status_code=status.HTTP_201_CREATED, summary="Create Task List")
def create_task_list(
    payload: TaskListCreate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.task_lists.create(payload, ctx)


# PUBLIC_INTERFACE
@router.get("/default", summary="Default Task List")
def default_task_list(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.task_lists.get_default(ctx)


# PUBLIC_INTERFACE
@router.get("/with-tasks", summary="Task Lists With Recent Tasks")
def task_lists_with_tasks(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.task_lists.get_with_tasks(ctx)


# PUBLIC_INTERFACE
@router.get("/stats", summary="Task List Statistics")
def task_list_stats(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.task_lists.get_statistics(ctx)


# PUBLIC_INTERFACE
@router.post("/reorder", summary="Reorder Task Lists")
def reorder_task_lists(
    payload: ReorderRequest,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.task_lists.reorder(payload.ids, ctx)


# PUBLIC_INTERFACE
@router.get("/{task_list_id}", summary="Get Task List", responses={404: {"description": "Task list not found"}})
def get_task_list(
    task_list_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    item = services.task_lists.find_by_id(task_list_id, ctx)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task list not found")
    return item


# PUBLIC_INTERFACE
@router.patch("/{task_list_id}", summary="Update Task List")
def update_task_list(
    task_list_id: str,
    payload: TaskListUpdate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.task_lists.update(task_list_id, payload, ctx)


# PUBLIC_INTERFACE
@router.delete(
    "/{task_list_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Task List",
    description="Delete a list. Its tasks move to the user's General list, else their oldest remaining list.",
    responses={400: {"description": "Only task list"}, 403: {"description": "Not found or access denied"}},
)
def delete_task_list(
    task_list_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    services.task_lists.delete(task_list_id, ctx)
    return None
