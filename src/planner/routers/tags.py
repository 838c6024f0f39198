from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..auth import get_context, get_services
from ..context import ServiceContext
from ..factory import ServiceRegistry
from ..models import TagType
from ..schemas import TagCreate, TagUpdate

router = APIRouter(
    prefix="/api/v1/tags",
    tags=["tags"],
)


class MergeRequest(BaseModel):
    source_ids: List[str] = Field(..., description="Tags folded into the target and then deleted")
    target_id: str


# PUBLIC_INTERFACE
@router.get("/", summary="List Tags", description="Tags are shared across users.")
def list_tags(
    type: Optional[TagType] = Query(None),
    q: Optional[str] = Query(None),
    unused: Optional[bool] = Query(None),
    min_usage_count: Optional[int] = Query(None, ge=0),
    with_usage_count: bool = Query(False),
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    filters = {
        "type": type,
        "search": q,
        "unused": unused,
        "min_usage_count": min_usage_count,
        "with_usage_count": with_usage_count,
    }
    return services.tags.find_all(filters, ctx)


# PUBLIC_INTERFACE
@router.post("/", status_code=status.HTTP_201_CREATED, summary="Create Tag")
def create_tag(
    payload: TagCreate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.tags.create(payload, ctx)


# PUBLIC_INTERFACE
@router.post("/find-or-create", summary="Find Or Create Tag")
def find_or_create_tag(
    payload: TagCreate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.tags.find_or_create(payload, ctx)


# PUBLIC_INTERFACE
@router.post(
    "/merge",
    summary="Merge Tags",
    description="Repoint every link of the source tags to the target and delete the sources, all at once.",
)
def merge_tags(
    payload: MergeRequest,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.tags.merge(payload.source_ids, payload.target_id, ctx)


# PUBLIC_INTERFACE
@router.post("/cleanup", summary="Delete Unused Tags")
def cleanup_tags(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.tags.cleanup_unused(ctx)


# PUBLIC_INTERFACE
@router.get("/stats", summary="Tag Statistics")
def tag_stats(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.tags.get_statistics(ctx)


# PUBLIC_INTERFACE
@router.get("/{tag_id}", summary="Get Tag", responses={404: {"description": "Tag not found"}})
def get_tag(tag_id: str, ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    item = services.tags.find_by_id(tag_id, ctx)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tag not found")
    return item


# PUBLIC_INTERFACE
@router.patch("/{tag_id}", summary="Update Tag", responses={404: {"description": "Tag not found"}})
def update_tag(
    tag_id: str,
    payload: TagUpdate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    item = services.tags.update(tag_id, payload, ctx)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tag not found")
    return item


# PUBLIC_INTERFACE
@router.delete("/{tag_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Tag")
def delete_tag(tag_id: str, ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    if not services.tags.delete(tag_id, ctx):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tag not found")
    return None
