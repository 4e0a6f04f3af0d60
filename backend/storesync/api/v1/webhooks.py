import uuid
from typing import Annotated

import structlog
from fastapi import APIRouter, Body, Depends, Header, HTTPException, status

from storesync.core.dependencies import get_gateway
from storesync.core.exceptions import PersistenceError, TransformError
from storesync.schemas.store import WebhookResponse
from storesync.services import webhook_service
from storesync.services.ingestion.gateway import PersistenceGateway

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/shopify/{store_id}", response_model=WebhookResponse)
async def receive_shopify_webhook(
    store_id: uuid.UUID,
    gateway: Annotated[PersistenceGateway, Depends(get_gateway)],
    payload: Annotated[dict, Body()],
    x_shopify_topic: Annotated[str | None, Header()] = None,
):
    """Apply a Shopify webhook delivery. Signature checks happen before this route."""
    if not x_shopify_topic:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-Shopify-Topic header")

    store = await gateway.get_store_by_id(store_id)
    if store is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")

    try:
        return await webhook_service.process_webhook(gateway, store, x_shopify_topic, payload)
    except TransformError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
