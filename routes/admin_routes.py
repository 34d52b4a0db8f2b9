"""
Operational endpoints: cross-store consistency, deletion reconciliation
and generator quota status.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from routes.dependencies import get_consistency_service, get_deletion_service, get_quota_service
from services.consistency_service import ConsistencyService
from services.deletion_service import DeletionService
from services.quota_service import QuotaService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


class CleanupRequest(BaseModel):
    content_ids: List[str] = Field(..., min_length=1, max_length=50)


@router.get("/consistency/check/{content_id}")
async def check_consistency(content_id: str, service: ConsistencyService = Depends(get_consistency_service)):
    return {"success": True, "report": await service.check_content(content_id)}


@router.get("/consistency/scan")
async def scan_consistency(
    limit: int = Query(100, ge=1, le=1000),
    user_id: Optional[str] = Query(None),
    service: ConsistencyService = Depends(get_consistency_service),
):
    reports = await service.scan_for_inconsistencies(limit, user_id)
    return {
        "success": True,
        "inconsistencies_found": len(reports),
        "reports": reports,
        "message": "No inconsistencies found" if not reports else f"Found {len(reports)} inconsistencies",
    }


@router.post("/consistency/cleanup")
async def cleanup_orphaned_vectors(request: CleanupRequest, service: ConsistencyService = Depends(get_consistency_service)):
    result = await service.cleanup_orphaned_vectors(request.content_ids)
    result["message"] = (
        f"Successfully cleaned up {result['cleaned_count']} orphaned vectors"
        if result["success"]
        else f"Cleanup completed with {len(result['errors'])} errors"
    )
    return result


@router.post("/deletions/reconcile")
async def reconcile_deletions(
    older_than_minutes: int = Query(15, ge=0),
    service: DeletionService = Depends(get_deletion_service),
):
    return await service.reconcile_stalled_sagas(older_than_minutes=older_than_minutes)


@router.get("/quota/status")
async def quota_status(service: QuotaService = Depends(get_quota_service)):
    return await service.get_status()
