from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..auth import get_context, get_services
from ..context import ServiceContext
from ..factory import ServiceRegistry
from ..schemas import CalendarCreate, CalendarUpdate

router = APIRouter(
    prefix="/api/v1/calendars",
    tags=["calendars"],
)


class ReorderRequest(BaseModel):
    ids: List[str] = Field(..., description="Calendar ids in the desired order")


# PUBLIC_INTERFACE
@router.get("/", summary="List Calendars")
def list_calendars(
    is_visible: Optional[bool] = Query(None),
    q: Optional[str] = Query(None, description="Search name and description"),
    with_event_counts: bool = Query(False),
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    if with_event_counts:
        return services.calendars.get_with_event_counts(ctx)
    return services.calendars.find_all({"is_visible": is_visible, "search": q}, ctx)


# PUBLIC_INTERFACE
@router.post("/", status_code=status.HTTP_201_CREATED, summary="Create Calendar")
def create_calendar(
    payload: CalendarCreate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.calendars.create(payload, ctx)


# PUBLIC_INTERFACE
@router.get("/default", summary="Default Calendar")
def default_calendar(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.calendars.get_default(ctx)


# PUBLIC_INTERFACE
@router.post("/reorder", summary="Reorder Calendars")
def reorder_calendars(
    payload: ReorderRequest,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.calendars.reorder(payload.ids, ctx)


# PUBLIC_INTERFACE
@router.get("/{calendar_id}", summary="Get Calendar", responses={404: {"description": "Calendar not found"}})
def get_calendar(
    calendar_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    item = services.calendars.find_by_id(calendar_id, ctx)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Calendar not found")
    return item


# PUBLIC_INTERFACE
@router.patch("/{calendar_id}", summary="Update Calendar")
def update_calendar(
    calendar_id: str,
    payload: CalendarUpdate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.calendars.update(calendar_id, payload, ctx)


# PUBLIC_INTERFACE
@router.post("/{calendar_id}/default", summary="Make Calendar Default")
def set_default_calendar(
    calendar_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.calendars.set_default(calendar_id, ctx)


# PUBLIC_INTERFACE
@router.post("/{calendar_id}/visibility", summary="Toggle Calendar Visibility")
def toggle_calendar_visibility(
    calendar_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.calendars.toggle_visibility(calendar_id, ctx)


# PUBLIC_INTERFACE
@router.delete("/{calendar_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Calendar")
def delete_calendar(
    calendar_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    services.calendars.delete(calendar_id, ctx)
    return None
