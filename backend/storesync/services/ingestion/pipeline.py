"""Transform-and-persist steps shared by scheduled syncs and webhooks."""

import uuid
from dataclasses import dataclass, field

import structlog

from storesync.core.exceptions import PersistenceError, TransformError
from storesync.services.ingestion.gateway import PersistenceGateway
from storesync.services.ingestion.records import EntityKind
from storesync.services.ingestion.transform import (
    transform_customer,
    transform_line_item,
    transform_order,
    transform_product,
)

logger = structlog.get_logger()


@dataclass
class BatchOutcome:
    written: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: "BatchOutcome") -> None:
        self.written += other.written
        self.errors.extend(other.errors)


def _describe(label: str, raw, exc: Exception) -> str:
    external_id = getattr(exc, "external_id", None)
    if external_id is None and isinstance(raw, dict):
        external_id = raw.get("id")
    return f"{label} {external_id}: {exc}"


def _transform(transform, raw, *args):
    """Run one transform, folding any data error it raises into a ``TransformError``."""
    try:
        return transform(raw, *args)
    except TransformError:
        raise
    except (ArithmeticError, ValueError, TypeError, AttributeError, KeyError) as exc:
        external_id = raw.get("id") if isinstance(raw, dict) else None
        raise TransformError(
            f"Unmappable record: {exc}", external_id=str(external_id) if external_id is not None else None
        ) from exc


async def _persist_simple(
    gateway: PersistenceGateway,
    kind: EntityKind,
    label: str,
    transform,
    raw_records: list[dict],
    tenant_id: uuid.UUID,
    store_id: uuid.UUID,
) -> BatchOutcome:
    outcome = BatchOutcome()
    records = []
    for raw in raw_records:
        try:
            records.append(_transform(transform, raw, tenant_id, store_id))
        except TransformError as exc:
            outcome.errors.append(_describe(label, raw, exc))

    result = await gateway.bulk_upsert(kind, records)
    outcome.written += result.written
    outcome.errors.extend(f"{label} {e.external_id}: {e.message}" for e in result.errors)
    return outcome


async def persist_customers(gateway, raw_records, tenant_id, store_id) -> BatchOutcome:
    return await _persist_simple(
        gateway, EntityKind.CUSTOMER, "Customer", transform_customer, raw_records, tenant_id, store_id
    )


async def persist_products(gateway, raw_records, tenant_id, store_id) -> BatchOutcome:
    return await _persist_simple(
        gateway, EntityKind.PRODUCT, "Product", transform_product, raw_records, tenant_id, store_id
    )


async def persist_orders(
    gateway: PersistenceGateway,
    raw_records: list[dict],
    tenant_id: uuid.UUID,
    store_id: uuid.UUID,
) -> BatchOutcome:
    """Upsert orders one at a time, each followed by its line items.

    Line items need the local order id, so orders cannot share one statement.
    A failing order is recorded and skipped; its line items are not written.
    """
    outcome = BatchOutcome()
    for raw in raw_records:
        try:
            order = _transform(transform_order, raw, tenant_id, store_id)
            order_id = await gateway.upsert_order(order)
        except (TransformError, PersistenceError) as exc:
            outcome.errors.append(_describe("Order", raw, exc))
            continue
        outcome.written += 1

        line_items = []
        for raw_item in raw.get("line_items") or []:
            try:
                line_items.append(_transform(transform_line_item, raw_item, order_id))
            except TransformError as exc:
                outcome.errors.append(f"Order {order.external_id} line item: {exc}")
        if line_items:
            result = await gateway.bulk_upsert(EntityKind.LINE_ITEM, line_items)
            outcome.errors.extend(
                f"Order {order.external_id} line item {e.external_id}: {e.message}" for e in result.errors
            )
    return outcome
