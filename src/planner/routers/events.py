from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ..auth import get_context, get_services
from ..context import ServiceContext
from ..factory import ServiceRegistry
from ..schemas import EventCreate, EventUpdate

router = APIRouter(
    prefix="/api/v1/events",
    tags=["events"],
)


class MoveRequest(BaseModel):
    calendar_id: str


# PUBLIC_INTERFACE
@router.get(
    "/",
    summary="List Events",
    description=(
        "List the caller's events ordered by start time.\n\n"
        "- start / end: events whose interval touches the window\n"
        "- calendar_id: repeatable\n"
        "- q: case-insensitive search on title, description, location and notes"
    ),
)
def list_events(
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    calendar_id: Optional[List[str]] = Query(None),
    q: Optional[str] = Query(None),
    all_day: Optional[bool] = Query(None),
    has_recurrence: Optional[bool] = Query(None),
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    filters: Dict[str, Any] = {
        "start": start,
        "end": end,
        "calendar_ids": calendar_id,
        "search": q,
        "all_day": all_day,
        "has_recurrence": has_recurrence,
    }
    return services.events.find_all(filters, ctx)


# PUBLIC_INTERFACE
@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    summary="Create Event",
    responses={400: {"description": "Invalid times, recurrence rule or calendar"}},
)
def create_event(
    payload: EventCreate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.events.create(payload, ctx)


# PUBLIC_INTERFACE
@router.get(
    "/conflicts",
    summary="Find Conflicts",
    description="Events overlapping [start, end). Touching intervals do not conflict.",
)
def find_conflicts(
    start: str = Query(...),
    end: str = Query(...),
    exclude_id: Optional[str] = Query(None),
    calendar_id: Optional[str] = Query(None),
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.events.get_conflicts(start, end, ctx, exclude_id=exclude_id, calendar_id=calendar_id)


# PUBLIC_INTERFACE
@router.get("/upcoming", summary="Upcoming Events")
def upcoming_events(
    limit: int = Query(10, ge=1, le=100),
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.events.find_upcoming(limit, ctx)


# PUBLIC_INTERFACE
@router.get("/today", summary="Today's Events")
def today_events(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.events.find_today(ctx)


# PUBLIC_INTERFACE
@router.get("/week", summary="This Week's Events")
def week_events(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.events.find_this_week(ctx)


# PUBLIC_INTERFACE
@router.get("/month/{year}/{month}", summary="Events In Month")
def month_events(
    year: int,
    month: int,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.events.find_by_month(year, month, ctx)


# PUBLIC_INTERFACE
@router.get("/{event_id}", summary="Get Event", responses={404: {"description": "Event not found"}})
def get_event(event_id: str, ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    item = services.events.find_by_id(event_id, ctx)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return item


# PUBLIC_INTERFACE
@router.patch("/{event_id}", summary="Update Event")
def update_event(
    event_id: str,
    payload: EventUpdate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.events.update(event_id, payload, ctx)


# PUBLIC_INTERFACE
@router.post("/{event_id}/move", summary="Move Event To Calendar")
def move_event(
    event_id: str,
    payload: MoveRequest,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.events.move_to_calendar(event_id, payload.calendar_id, ctx)


# PUBLIC_INTERFACE
@router.post("/{event_id}/duplicate", status_code=status.HTTP_201_CREATED, summary="Duplicate Event")
def duplicate_event(
    event_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.events.duplicate(event_id, ctx)


# PUBLIC_INTERFACE
@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Event")
def delete_event(event_id: str, ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    services.events.delete(event_id, ctx)
    return None
