"""
FastAPI routes for content processing and deletion.

  POST   /api/v1/contents/{content_id}/process   start the pipeline (background), 409 if running
  POST   /api/v1/contents/{content_id}/resume    resume a paused or failed item
  GET    /api/v1/contents/{content_id}/status    per-stage progress
  DELETE /api/v1/contents/{content_id}           soft delete, or ?permanent=true
  POST   /api/v1/contents/bulk-delete            up to 100 ids, isolated per item
  POST   /api/v1/contents/{content_id}/restore   undo a soft delete within 30 days
  GET    /api/v1/contents/deleted                soft-deleted items with recovery info
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from models.content_models import StageName
from models.deletion_models import BulkDeleteRequest, DeletePhase
from routes.dependencies import get_deletion_service, get_pipeline
from services.deletion_service import DeletionService
from services.pipeline import ContentPipeline
from utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["contents"])


class ResumeRequest(BaseModel):
    from_stage: Optional[StageName] = None


@router.post("/contents/{content_id}/process", status_code=202)
async def process_content(content_id: str, pipeline: ContentPipeline = Depends(get_pipeline)):
    """Kick off processing; poll the status endpoint for progress."""
    await pipeline.get_status(content_id)
    pipeline.start_processing(content_id)
    return {"success": True, "content_id": content_id, "message": "Processing started"}


@router.post("/contents/{content_id}/resume", status_code=202)
async def resume_content(
    content_id: str,
    request: Optional[ResumeRequest] = None,
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    from_stage = request.from_stage if request else None
    await pipeline.get_status(content_id)
    pipeline.start_processing(content_id, resume=True, from_stage=from_stage)
    return {
        "success": True,
        "content_id": content_id,
        "message": f"Processing resumed from {from_stage.value if from_stage else 'first incomplete stage'}",
    }


@router.get("/contents/{content_id}/status")
async def get_content_status(content_id: str, pipeline: ContentPipeline = Depends(get_pipeline)):
    return await pipeline.get_status(content_id)


@router.get("/contents/deleted")
async def list_deleted_contents(user_id: str = Query(...), service: DeletionService = Depends(get_deletion_service)):
    items = await service.list_deleted_contents(user_id)
    return {"success": True, "count": len(items), "contents": items}


@router.delete("/contents/{content_id}")
async def delete_content(
    content_id: str,
    response: Response,
    user_id: str = Query(...),
    permanent: bool = Query(False),
    service: DeletionService = Depends(get_deletion_service),
):
    """
    Soft delete by default. With ?permanent=true runs the full deletion
    protocol (vectors, blob, primary records); partial failures are reported
    per phase with a 500 status.
    """
    if not permanent:
        return await service.soft_delete_content(content_id, user_id)

    result = await service.permanently_delete_content(content_id, user_id)
    if not result.phases[DeletePhase.VALIDATION].success:
        raise NotFoundError(f"Content {content_id} not found")
    if not result.success:
        response.status_code = 500
    return result


@router.post("/contents/bulk-delete")
async def bulk_delete_contents(request: BulkDeleteRequest, service: DeletionService = Depends(get_deletion_service)):
    return await service.bulk_delete_contents(request.content_ids, request.user_id, request.permanent)


@router.post("/contents/{content_id}/restore")
async def restore_content(content_id: str, user_id: str = Query(...), service: DeletionService = Depends(get_deletion_service)):
    return await service.restore_content(content_id, user_id)
