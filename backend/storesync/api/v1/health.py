from typing import Annotated

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends

from storesync.core.config import settings
from storesync.core.dependencies import get_gateway, get_scheduler
from storesync.schemas.common import HealthResponse
from storesync.services.ingestion.gateway import PersistenceGateway
from storesync.services.sync.scheduler import SyncScheduler

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    gateway: Annotated[PersistenceGateway, Depends(get_gateway)],
    scheduler: Annotated[SyncScheduler | None, Depends(get_scheduler)],
):
    db_status = "ok"
    redis_status = "ok"

    try:
        await gateway.ping()
    except Exception:
        db_status = "error"

    if settings.SYNC_REGISTRY_BACKEND == "redis":
        try:
            r = aioredis.from_url(settings.REDIS_URL)
            await r.ping()
            await r.aclose()
        except Exception:
            redis_status = "error"
    else:
        redis_status = "unused"

    if scheduler is None:
        scheduler_status = "disabled"
    else:
        scheduler_status = "ok" if scheduler.scheduler.running else "stopped"

    overall = "ok" if db_status == "ok" and redis_status != "error" else "degraded"
    return HealthResponse(status=overall, database=db_status, redis=redis_status, scheduler=scheduler_status)
