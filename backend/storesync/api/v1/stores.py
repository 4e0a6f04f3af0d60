import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storesync.api.v1.errors import to_http_exception
from storesync.core.database import get_db
from storesync.core.dependencies import get_shopify_client, get_tenant_id
from storesync.core.exceptions import (
    ConflictError,
    InvalidCredential,
    NotFoundError,
    PreconditionError,
    SourceUnavailable,
)
from storesync.models import Store
from storesync.schemas.store import StoreConnectRequest, StoreResponse, StoreTestResponse, SyncSettingsUpdate
from storesync.services import store_service
from storesync.services.shopify_client import ShopifyClient

router = APIRouter(prefix="/stores", tags=["stores"])

TenantId = Annotated[uuid.UUID, Depends(get_tenant_id)]
Db = Annotated[AsyncSession, Depends(get_db)]
Client = Annotated[ShopifyClient, Depends(get_shopify_client)]


def _to_response(store: Store) -> StoreResponse:
    return StoreResponse(
        id=str(store.id),
        tenant_id=str(store.tenant_id),
        domain=store.domain,
        store_name=store.store_name,
        shopify_shop_id=store.shopify_shop_id,
        connection_state=store.connection_state,
        sync_frequency=store.sync_frequency,
        last_sync_at=store.last_sync_at.isoformat() if store.last_sync_at else None,
        currency=store.currency,
        timezone=store.timezone,
        error_log=store.error_log,
    )


@router.get("", response_model=list[StoreResponse])
async def list_stores(tenant_id: TenantId, db: Db):
    result = await db.execute(select(Store).where(Store.tenant_id == tenant_id).order_by(Store.created_at))
    return [_to_response(s) for s in result.scalars().all()]


@router.post("", response_model=StoreResponse, status_code=status.HTTP_201_CREATED)
async def connect_store(body: StoreConnectRequest, tenant_id: TenantId, db: Db, client: Client):
    """Connect (or reconnect) a Shopify store with an Admin API access token."""
    try:
        store = await store_service.connect_store(
            db, client, tenant_id, body.domain, body.access_token, body.sync_frequency
        )
    except InvalidCredential as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Shopify rejected the token: {exc}")
    except SourceUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Shopify unavailable: {exc}")
    except (PreconditionError, ConflictError) as exc:
        raise to_http_exception(exc)
    await db.commit()
    return _to_response(store)


@router.patch("/{store_id}/settings", response_model=StoreResponse)
async def update_sync_settings(store_id: uuid.UUID, body: SyncSettingsUpdate, tenant_id: TenantId, db: Db):
    try:
        store = await store_service.update_sync_settings(db, tenant_id, store_id, body.sync_frequency)
    except (NotFoundError, PreconditionError) as exc:
        raise to_http_exception(exc)
    await db.commit()
    return _to_response(store)


@router.delete("/{store_id}", response_model=StoreResponse)
async def disconnect_store(store_id: uuid.UUID, tenant_id: TenantId, db: Db):
    try:
        store = await store_service.disconnect_store(db, tenant_id, store_id)
    except NotFoundError as exc:
        raise to_http_exception(exc)
    await db.commit()
    return _to_response(store)


@router.post("/{store_id}/test", response_model=StoreTestResponse)
async def test_store_connection(store_id: uuid.UUID, tenant_id: TenantId, db: Db, client: Client):
    try:
        return await store_service.test_store_connection(db, client, tenant_id, store_id)
    except NotFoundError as exc:
        raise to_http_exception(exc)
