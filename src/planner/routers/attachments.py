from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..auth import get_context, get_services
from ..context import ServiceContext
from ..factory import ServiceRegistry
from ..schemas import AttachmentCreate, AttachmentUpdate

router = APIRouter(
    prefix="/api/v1/attachments",
    tags=["attachments"],
)


class BulkDeleteRequest(BaseModel):
    ids: List[str] = Field(..., description="Attachment ids; every one must belong to the caller")


# PUBLIC_INTERFACE
@router.get("/", summary="List Attachments")
def list_attachments(
    task_id: Optional[str] = Query(None),
    file_type: Optional[str] = Query(None),
    category: Optional[str] = Query(None, description="images, documents, audio, video or archives"),
    q: Optional[str] = Query(None, description="Search file name"),
    limit: Optional[int] = Query(None, ge=1, le=100),
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    if category is not None:
        return services.attachments.find_by_category(category, ctx)
    filters = {"task_id": task_id, "file_type": file_type, "search": q, "limit": limit}
    return services.attachments.find_all(filters, ctx)


# PUBLIC_INTERFACE
@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    summary="Create Attachment",
    responses={400: {"description": "Unsupported type, file too large or task full"}},
)
def create_attachment(
    payload: AttachmentCreate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.attachments.create(payload, ctx)


# PUBLIC_INTERFACE
@router.get("/stats", summary="Storage Statistics")
def storage_stats(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return services.attachments.get_storage_stats(ctx)


# PUBLIC_INTERFACE
@router.post("/bulk-delete", summary="Bulk Delete Attachments")
def bulk_delete_attachments(
    payload: BulkDeleteRequest,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return {"deleted_count": services.attachments.bulk_delete(payload.ids, ctx)}


# PUBLIC_INTERFACE
@router.get("/{attachment_id}", summary="Get Attachment", responses={404: {"description": "Attachment not found"}})
def get_attachment(
    attachment_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    item = services.attachments.find_by_id(attachment_id, ctx)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
    return item


# PUBLIC_INTERFACE
@router.get("/{attachment_id}/download", summary="Attachment Download URL")
def download_attachment(
    attachment_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return {"url": services.attachments.get_download_url(attachment_id, ctx)}


# PUBLIC_INTERFACE
@router.patch("/{attachment_id}", summary="Update Attachment")
def update_attachment(
    attachment_id: str,
    payload: AttachmentUpdate,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    return services.attachments.update(attachment_id, payload, ctx)


# PUBLIC_INTERFACE
@router.delete("/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Attachment")
def delete_attachment(
    attachment_id: str,
    ctx: ServiceContext = Depends(get_context),
    services: ServiceRegistry = Depends(get_services),
):
    services.attachments.delete(attachment_id, ctx)
    return None


# PUBLIC_INTERFACE
@router.post("/cleanup", summary="Remove Orphaned Attachments")
def cleanup_attachments(ctx: ServiceContext = Depends(get_context), services: ServiceRegistry = Depends(get_services)):
    return {"deleted_count": services.attachments.cleanup_orphaned(ctx)}
