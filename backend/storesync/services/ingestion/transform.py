"""Map raw Shopify payloads onto persistence-ready records.

Every function is pure apart from the freshly generated local id. Money is
coerced to cents-precision Decimal, missing numbers become 0, and nested
structures are kept whole as JSON sub-documents.
"""

import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import ValidationError

from storesync.core.exceptions import TransformError
from storesync.schemas.shopify import ShopifyCustomer, ShopifyLineItem, ShopifyOrder, ShopifyProduct
from storesync.services.ingestion.records import CustomerRecord, LineItemRecord, OrderRecord, ProductRecord

_CENTS = Decimal("0.01")


def _money(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0.00")
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def _int(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(value)


def _parse(model, raw: dict):
    if not isinstance(raw, dict):
        raise TransformError(f"Expected an object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        external_id = raw.get("id")
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise TransformError(
            f"Invalid {model.__name__} {external_id}: {field}: {first.get('msg')}",
            external_id=str(external_id) if external_id is not None else None,
        ) from exc


def transform_customer(raw: dict, tenant_id: uuid.UUID, store_id: uuid.UUID) -> CustomerRecord:
    c = _parse(ShopifyCustomer, raw)
    return CustomerRecord(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        store_id=store_id,
        shopify_customer_id=c.id,
        first_name=c.first_name,
        last_name=c.last_name,
        email=c.email,
        phone=c.phone,
        state=c.state,
        total_spent=_money(c.total_spent),
        orders_count=_int(c.orders_count),
        last_order_id=c.last_order_id,
        last_order_name=c.last_order_name,
        note=c.note,
        verified_email=c.verified_email,
        tax_exempt=c.tax_exempt,
        tags=c.tags,
        currency=c.currency,
        addresses=c.addresses,
        default_address=c.default_address,
        shopify_created_at=c.created_at,
        shopify_updated_at=c.updated_at,
    )


def transform_product(raw: dict, tenant_id: uuid.UUID, store_id: uuid.UUID) -> ProductRecord:
    p = _parse(ShopifyProduct, raw)
    first_variant = (p.variants or [{}])[0] or {}
    try:
        price = _money(first_variant.get("price"))
        compare_at_price = _money(first_variant.get("compare_at_price"))
        inventory_quantity = _int(first_variant.get("inventory_quantity"))
    except (ArithmeticError, ValueError, TypeError) as exc:
        raise TransformError(f"Invalid variant on product {p.id}: {exc}", external_id=str(p.id)) from exc

    return ProductRecord(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        store_id=store_id,
        shopify_product_id=p.id,
        title=p.title,
        body_html=p.body_html,
        vendor=p.vendor,
        product_type=p.product_type,
        handle=p.handle,
        status=p.status,
        published_scope=p.published_scope,
        tags=p.tags,
        variants=p.variants,
        options=p.options,
        images=p.images,
        image=p.image,
        price=price,
        compare_at_price=compare_at_price,
        inventory_quantity=inventory_quantity,
        inventory_policy=first_variant.get("inventory_policy"),
        inventory_management=first_variant.get("inventory_management"),
        published_at=p.published_at,
        shopify_created_at=p.created_at,
        shopify_updated_at=p.updated_at,
    )


def transform_order(raw: dict, tenant_id: uuid.UUID, store_id: uuid.UUID) -> OrderRecord:
    o = _parse(ShopifyOrder, raw)
    return OrderRecord(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        store_id=store_id,
        shopify_order_id=o.id,
        shopify_customer_id=o.customer.id if o.customer else None,
        order_number=o.order_number,
        name=o.name,
        email=o.email,
        phone=o.phone,
        financial_status=o.financial_status,
        fulfillment_status=o.fulfillment_status,
        currency=o.currency,
        total_price=_money(o.total_price),
        subtotal_price=_money(o.subtotal_price),
        total_tax=_money(o.total_tax),
        total_discounts=_money(o.total_discounts),
        total_weight=_int(o.total_weight),
        taxes_included=o.taxes_included,
        confirmed=o.confirmed,
        test=o.test,
        gateway=o.gateway,
        source_name=o.source_name,
        landing_site=o.landing_site,
        referring_site=o.referring_site,
        note=o.note,
        tags=o.tags,
        tax_lines=o.tax_lines,
        discount_codes=o.discount_codes,
        shipping_address=o.shipping_address,
        billing_address=o.billing_address,
        processed_at=o.processed_at,
        cancelled_at=o.cancelled_at,
        shopify_created_at=o.created_at,
        shopify_updated_at=o.updated_at,
    )


def transform_line_item(raw: dict, order_id: uuid.UUID) -> LineItemRecord:
    li = _parse(ShopifyLineItem, raw)
    return LineItemRecord(
        id=uuid.uuid4(),
        order_id=order_id,
        shopify_line_item_id=li.id,
        shopify_product_id=li.product_id,
        shopify_variant_id=li.variant_id,
        title=li.title,
        name=li.name,
        variant_title=li.variant_title,
        vendor=li.vendor,
        product_type=li.product_type,
        sku=li.sku,
        quantity=_int(li.quantity),
        price=_money(li.price),
        total_discount=_money(li.total_discount),
        grams=_int(li.grams),
        taxable=li.taxable,
        requires_shipping=li.requires_shipping,
        fulfillment_status=li.fulfillment_status,
        fulfillment_service=li.fulfillment_service,
        properties=li.properties,
        tax_lines=li.tax_lines,
    )
