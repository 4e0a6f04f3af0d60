"""Apply Shopify webhook events to mirrored records.

HMAC verification happens upstream; payloads arriving here are trusted.
"""

import structlog

from storesync.core.exceptions import PersistenceError, TransformError
from storesync.models import Store
from storesync.services.ingestion.gateway import PersistenceGateway
from storesync.services.ingestion.pipeline import persist_customers, persist_orders, persist_products
from storesync.services.ingestion.records import EntityKind

logger = structlog.get_logger()

_UPSERT_TOPICS = {
    "orders/create": persist_orders,
    "orders/updated": persist_orders,
    "orders/paid": persist_orders,
    "orders/cancelled": persist_orders,
    "orders/fulfilled": persist_orders,
    "customers/create": persist_customers,
    "customers/update": persist_customers,
    "products/create": persist_products,
    "products/update": persist_products,
}

_DELETE_TOPICS = {
    "orders/delete": EntityKind.ORDER,
    "customers/delete": EntityKind.CUSTOMER,
    "products/delete": EntityKind.PRODUCT,
}

SUPPORTED_TOPICS = frozenset(_UPSERT_TOPICS) | frozenset(_DELETE_TOPICS)


async def process_webhook(gateway: PersistenceGateway, store: Store, topic: str, payload: dict) -> dict:
    """Upsert or delete the record carried by one webhook delivery."""
    log = logger.bind(store_id=str(store.id), tenant_id=str(store.tenant_id), topic=topic)
    external_id = payload.get("id") if isinstance(payload, dict) else None

    if topic in _DELETE_TOPICS:
        try:
            external_id = int(external_id)
        except (TypeError, ValueError) as exc:
            raise TransformError(f"{topic} payload has no usable id") from exc
        deleted = await gateway.delete_by_external_id(
            _DELETE_TOPICS[topic], store.tenant_id, store.id, external_id
        )
        log.info("webhook.deleted", external_id=external_id, deleted=deleted)
        return {"topic": topic, "action": "deleted", "external_id": str(external_id), "affected": deleted}

    persist = _UPSERT_TOPICS.get(topic)
    if persist is None:
        log.warning("webhook.unhandled_topic")
        return {"topic": topic, "action": "ignored", "external_id": None, "affected": 0}

    outcome = await persist(gateway, [payload], store.tenant_id, store.id)
    if outcome.written == 0:
        message = outcome.errors[0] if outcome.errors else "record was not written"
        log.warning("webhook.upsert_failed", external_id=external_id, error=message)
        raise PersistenceError(message, external_id=str(external_id) if external_id is not None else None)

    for error in outcome.errors:
        log.warning("webhook.partial_error", external_id=external_id, error=error)
    log.info("webhook.upserted", external_id=external_id)
    return {
        "topic": topic,
        "action": "upserted",
        "external_id": str(external_id),
        "affected": outcome.written,
        "errors": outcome.errors,
    }
