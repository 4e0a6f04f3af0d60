import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storesync.core.encryption import encrypt_credentials, get_access_token, get_current_key_version
from storesync.core.exceptions import ConflictError, InvalidCredential, NotFoundError, PreconditionError, SourceUnavailable
from storesync.models import Store
from storesync.models.store import SYNC_FREQUENCIES
from storesync.services.ingestion.records import ResourceKind
from storesync.services.shopify_client import ShopifyClient, normalize_shop_domain

logger = structlog.get_logger()


def _canonical_domain(domain: str) -> str:
    return f"{normalize_shop_domain(domain)}.myshopify.com"


def _check_frequency(sync_frequency: str) -> None:
    if sync_frequency not in SYNC_FREQUENCIES:
        raise PreconditionError(f"Unknown sync frequency '{sync_frequency}'")


async def _get_owned_store(db: AsyncSession, tenant_id: uuid.UUID, store_id: uuid.UUID) -> Store:
    result = await db.execute(select(Store).where(Store.id == store_id, Store.tenant_id == tenant_id))
    store = result.scalar_one_or_none()
    if store is None:
        raise NotFoundError(f"Store {store_id} not found")
    return store


async def connect_store(
    db: AsyncSession,
    client: ShopifyClient,
    tenant_id: uuid.UUID,
    domain: str,
    access_token: str,
    sync_frequency: str = "daily",
) -> Store:
    """Verify the token against Shopify, then create or refresh the store row."""
    _check_frequency(sync_frequency)
    domain = _canonical_domain(domain)
    shop = await client.verify_connection(domain, access_token)

    result = await db.execute(select(Store).where(Store.domain == domain))
    store = result.scalar_one_or_none()
    if store is not None and store.tenant_id != tenant_id:
        raise ConflictError(f"Store {domain} is connected to another tenant")

    if store is None:
        store = Store(tenant_id=tenant_id, domain=domain, store_name=shop.name or domain)
        db.add(store)

    store.store_name = shop.name or store.store_name
    store.shopify_shop_id = shop.id
    store.currency = shop.currency
    store.timezone = shop.iana_timezone or shop.timezone
    store.encrypted_credentials = encrypt_credentials({"access_token": access_token, "shop_domain": domain})
    store.encryption_key_version = get_current_key_version()
    store.connection_state = "connected"
    store.sync_frequency = sync_frequency
    store.error_log = None
    await db.flush()

    logger.info("store.connected", store_id=str(store.id), tenant_id=str(tenant_id), domain=domain)
    return store


async def disconnect_store(db: AsyncSession, tenant_id: uuid.UUID, store_id: uuid.UUID) -> Store:
    """Drop stored credentials; mirrored data is kept."""
    store = await _get_owned_store(db, tenant_id, store_id)
    store.encrypted_credentials = None
    store.connection_state = "disconnected"
    await db.flush()
    logger.info("store.disconnected", store_id=str(store.id), tenant_id=str(tenant_id))
    return store


async def update_sync_settings(
    db: AsyncSession, tenant_id: uuid.UUID, store_id: uuid.UUID, sync_frequency: str
) -> Store:
    _check_frequency(sync_frequency)
    store = await _get_owned_store(db, tenant_id, store_id)
    store.sync_frequency = sync_frequency
    await db.flush()
    logger.info("store.sync_settings_updated", store_id=str(store.id), sync_frequency=sync_frequency)
    return store


async def test_store_connection(
    db: AsyncSession, client: ShopifyClient, tenant_id: uuid.UUID, store_id: uuid.UUID
) -> dict:
    """Verify credentials and report resource counts, or the reason it failed."""
    store = await _get_owned_store(db, tenant_id, store_id)
    try:
        access_token = get_access_token(store.encrypted_credentials)
        shop = await client.verify_connection(store.domain, access_token)
        counts = {kind.value: await client.count(store.domain, access_token, kind) for kind in ResourceKind}
    except InvalidCredential as exc:
        return {"store_id": str(store.id), "status": "error", "message": f"Invalid credential: {exc}"}
    except SourceUnavailable as exc:
        return {"store_id": str(store.id), "status": "error", "message": f"Shopify unavailable: {exc}"}

    return {
        "store_id": str(store.id),
        "status": "ok",
        "message": f"Connected to {shop.name or store.domain}",
        "shop": shop.model_dump(include={"id", "name", "currency", "iana_timezone", "plan_name"}),
        "counts": counts,
    }
