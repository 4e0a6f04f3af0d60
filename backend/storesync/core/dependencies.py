import uuid
from typing import Annotated

import structlog
from fastapi import Header, HTTPException, Request, status

from storesync.services.ingestion.gateway import PersistenceGateway
from storesync.services.shopify_client import ShopifyClient
from storesync.services.sync.orchestrator import SyncOrchestrator
from storesync.services.sync.scheduler import SyncScheduler


async def get_tenant_id(x_tenant_id: Annotated[str | None, Header()] = None) -> uuid.UUID:
    """Tenant scoping is resolved upstream and forwarded in ``X-Tenant-ID``."""
    if not x_tenant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Tenant-ID header")
    try:
        tenant_id = uuid.UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid X-Tenant-ID header")

    structlog.contextvars.bind_contextvars(tenant_id=str(tenant_id))
    return tenant_id


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_gateway(request: Request) -> PersistenceGateway:
    return request.app.state.gateway


def get_shopify_client(request: Request) -> ShopifyClient:
    return request.app.state.shopify_client


def get_scheduler(request: Request) -> SyncScheduler | None:
    return getattr(request.app.state, "scheduler", None)
