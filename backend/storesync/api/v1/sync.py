import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from storesync.api.v1.errors import to_http_exception
from storesync.core.dependencies import get_orchestrator, get_tenant_id
from storesync.core.exceptions import ConflictError, NotFoundError, PreconditionError
from storesync.schemas.common import PaginatedResponse
from storesync.schemas.sync import (
    SyncJobResponse,
    SyncRunResponse,
    SyncStatisticsResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
    SyncTriggerResponse,
)
from storesync.services.sync.job import SyncKind
from storesync.services.sync.orchestrator import SyncOrchestrator

router = APIRouter(prefix="/sync", tags=["sync"])

TenantId = Annotated[uuid.UUID, Depends(get_tenant_id)]
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]


async def _trigger(orchestrator: SyncOrchestrator, tenant_id: uuid.UUID, store_id: uuid.UUID, kind: SyncKind):
    try:
        job = await orchestrator.trigger_sync(tenant_id, store_id, kind)
    except (NotFoundError, PreconditionError, ConflictError) as exc:
        raise to_http_exception(exc)
    return SyncTriggerResponse(
        job=SyncJobResponse(**job.snapshot()),
        message=f"{kind.value.capitalize()} sync started",
    )


@router.post("/full", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_full_sync(body: SyncTriggerRequest, tenant_id: TenantId, orchestrator: Orchestrator):
    """Start a full sync of every customer, product and order."""
    return await _trigger(orchestrator, tenant_id, body.store_id, SyncKind.FULL)


@router.post("/incremental", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_incremental_sync(body: SyncTriggerRequest, tenant_id: TenantId, orchestrator: Orchestrator):
    """Start a sync bounded by the store's last successful sync."""
    return await _trigger(orchestrator, tenant_id, body.store_id, SyncKind.INCREMENTAL)


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    tenant_id: TenantId,
    orchestrator: Orchestrator,
    store_id: uuid.UUID | None = Query(None),
):
    return await orchestrator.get_status(tenant_id, store_id)


@router.get("/statistics", response_model=SyncStatisticsResponse)
async def get_sync_statistics(
    tenant_id: TenantId,
    orchestrator: Orchestrator,
    store_id: uuid.UUID | None = Query(None),
    period: str = Query("30d", pattern="^(7d|30d|90d)$"),
):
    return await orchestrator.get_sync_statistics(tenant_id, store_id, period)


@router.get("/history", response_model=PaginatedResponse[SyncRunResponse])
async def get_sync_history(
    tenant_id: TenantId,
    orchestrator: Orchestrator,
    store_id: uuid.UUID | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    history = await orchestrator.get_sync_history(tenant_id, store_id, page=page, page_size=page_size)
    items = [
        SyncRunResponse(
            id=str(r.id), store_id=str(r.store_id), job_id=r.job_id,
            kind=r.kind, trigger=r.trigger, status=r.status,
            started_at=r.started_at.isoformat() if r.started_at else None,
            completed_at=r.completed_at.isoformat() if r.completed_at else None,
            total_items=r.total_items, processed_items=r.processed_items,
            error_count=r.error_count, errors=r.errors,
        )
        for r in history["items"]
    ]
    return PaginatedResponse(
        items=items,
        total=history["total"],
        page=history["page"],
        page_size=history["page_size"],
        pages=history["pages"],
    )


@router.post("/runs/{run_id}/retry", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def retry_sync(run_id: uuid.UUID, tenant_id: TenantId, orchestrator: Orchestrator):
    """Re-run the kind of a failed or cancelled sync."""
    try:
        job = await orchestrator.retry_sync(run_id, tenant_id)
    except (NotFoundError, PreconditionError, ConflictError) as exc:
        raise to_http_exception(exc)
    return SyncTriggerResponse(job=SyncJobResponse(**job.snapshot()), message="Sync retry started")


@router.get("/jobs/{job_id}", response_model=SyncJobResponse)
async def get_sync_job(job_id: str, tenant_id: TenantId, orchestrator: Orchestrator):
    job = await orchestrator.get_job(job_id, tenant_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sync job not found")
    return SyncJobResponse(**job.snapshot())


@router.delete("/{job_id}")
async def cancel_sync(job_id: str, tenant_id: TenantId, orchestrator: Orchestrator):
    cancelled = await orchestrator.cancel_sync(job_id, tenant_id)
    if not cancelled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active sync job found")
    return {"job_id": job_id, "cancelled": True}
