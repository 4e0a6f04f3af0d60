"""Transformed record types, one per persisted entity kind."""

import dataclasses
import enum
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar


class ResourceKind(str, enum.Enum):
    """Shopify REST collections pulled by a sync, in processing order."""

    CUSTOMERS = "customers"
    PRODUCTS = "products"
    ORDERS = "orders"


class EntityKind(str, enum.Enum):
    CUSTOMER = "customer"
    PRODUCT = "product"
    ORDER = "order"
    LINE_ITEM = "line_item"


@dataclass(frozen=True)
class BaseRecord:
    kind: ClassVar[EntityKind]
    external_field: ClassVar[str]

    id: uuid.UUID

    @property
    def external_id(self) -> str:
        return str(getattr(self, self.external_field))

    def to_row(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}


@dataclass(frozen=True)
class CustomerRecord(BaseRecord):
    kind: ClassVar[EntityKind] = EntityKind.CUSTOMER
    external_field: ClassVar[str] = "shopify_customer_id"

    tenant_id: uuid.UUID
    store_id: uuid.UUID
    shopify_customer_id: int
    first_name: str | None
    last_name: str | None
    email: str | None
    phone: str | None
    state: str | None
    total_spent: Decimal
    orders_count: int
    last_order_id: int | None
    last_order_name: str | None
    note: str | None
    verified_email: bool | None
    tax_exempt: bool | None
    tags: str | None
    currency: str | None
    addresses: list | None
    default_address: dict | None
    shopify_created_at: datetime | None
    shopify_updated_at: datetime | None


@dataclass(frozen=True)
class ProductRecord(BaseRecord):
    kind: ClassVar[EntityKind] = EntityKind.PRODUCT
    external_field: ClassVar[str] = "shopify_product_id"

    tenant_id: uuid.UUID
    store_id: uuid.UUID
    shopify_product_id: int
    title: str | None
    body_html: str | None
    vendor: str | None
    product_type: str | None
    handle: str | None
    status: str | None
    published_scope: str | None
    tags: str | None
    variants: list | None
    options: list | None
    images: list | None
    image: dict | None
    price: Decimal
    compare_at_price: Decimal
    inventory_quantity: int
    inventory_policy: str | None
    inventory_management: str | None
    published_at: datetime | None
    shopify_created_at: datetime | None
    shopify_updated_at: datetime | None


@dataclass(frozen=True)
class OrderRecord(BaseRecord):
    kind: ClassVar[EntityKind] = EntityKind.ORDER
    external_field: ClassVar[str] = "shopify_order_id"

    tenant_id: uuid.UUID
    store_id: uuid.UUID
    shopify_order_id: int
    shopify_customer_id: int | None
    order_number: int | None
    name: str | None
    email: str | None
    phone: str | None
    financial_status: str | None
    fulfillment_status: str | None
    currency: str | None
    total_price: Decimal
    subtotal_price: Decimal
    total_tax: Decimal
    total_discounts: Decimal
    total_weight: int
    taxes_included: bool | None
    confirmed: bool | None
    test: bool | None
    gateway: str | None
    source_name: str | None
    landing_site: str | None
    referring_site: str | None
    note: str | None
    tags: str | None
    tax_lines: list | None
    discount_codes: list | None
    shipping_address: dict | None
    billing_address: dict | None
    processed_at: datetime | None
    cancelled_at: datetime | None
    shopify_created_at: datetime | None
    shopify_updated_at: datetime | None


@dataclass(frozen=True)
class LineItemRecord(BaseRecord):
    kind: ClassVar[EntityKind] = EntityKind.LINE_ITEM
    external_field: ClassVar[str] = "shopify_line_item_id"

    order_id: uuid.UUID
    shopify_line_item_id: int
    shopify_product_id: int | None
    shopify_variant_id: int | None
    title: str | None
    name: str | None
    variant_title: str | None
    vendor: str | None
    product_type: str | None
    sku: str | None
    quantity: int
    price: Decimal
    total_discount: Decimal
    grams: int
    taxable: bool | None
    requires_shipping: bool | None
    fulfillment_status: str | None
    fulfillment_service: str | None
    properties: list | None
    tax_lines: list | None


Record = CustomerRecord | ProductRecord | OrderRecord | LineItemRecord
