"""Raw Shopify Admin REST shapes.

Only the fields the sync engine maps are declared; anything else Shopify sends
is kept as an extra attribute so nothing is rejected for being unfamiliar.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class ShopifyResource(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ShopifyCustomer(ShopifyResource):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    state: str | None = None
    total_spent: Decimal | None = None
    orders_count: int | None = None
    last_order_id: int | None = None
    last_order_name: str | None = None
    note: str | None = None
    verified_email: bool | None = None
    tax_exempt: bool | None = None
    tags: str | None = None
    currency: str | None = None
    addresses: list[dict] | None = None
    default_address: dict | None = None


class ShopifyProduct(ShopifyResource):
    title: str | None = None
    body_html: str | None = None
    vendor: str | None = None
    product_type: str | None = None
    handle: str | None = None
    status: str | None = None
    published_scope: str | None = None
    published_at: datetime | None = None
    tags: str | None = None
    variants: list[dict] | None = None
    options: list[dict] | None = None
    images: list[dict] | None = None
    image: dict | None = None


class ShopifyLineItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    product_id: int | None = None
    variant_id: int | None = None
    title: str | None = None
    name: str | None = None
    variant_title: str | None = None
    vendor: str | None = None
    product_type: str | None = None
    sku: str | None = None
    quantity: int | None = None
    price: Decimal | None = None
    total_discount: Decimal | None = None
    grams: int | None = None
    taxable: bool | None = None
    requires_shipping: bool | None = None
    fulfillment_status: str | None = None
    fulfillment_service: str | None = None
    properties: list[dict] | None = None
    tax_lines: list[dict] | None = None


class ShopifyCustomerRef(BaseModel):
    """The customer summary embedded in an order."""

    model_config = ConfigDict(extra="allow")

    id: int | None = None


class ShopifyOrder(ShopifyResource):
    order_number: int | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    customer: ShopifyCustomerRef | None = None
    financial_status: str | None = None
    fulfillment_status: str | None = None
    currency: str | None = None
    total_price: Decimal | None = None
    subtotal_price: Decimal | None = None
    total_tax: Decimal | None = None
    total_discounts: Decimal | None = None
    total_weight: int | None = None
    taxes_included: bool | None = None
    confirmed: bool | None = None
    test: bool | None = None
    gateway: str | None = None
    source_name: str | None = None
    landing_site: str | None = None
    referring_site: str | None = None
    note: str | None = None
    tags: str | None = None
    tax_lines: list[dict] | None = None
    discount_codes: list[dict] | None = None
    shipping_address: dict | None = None
    billing_address: dict | None = None
    processed_at: datetime | None = None
    cancelled_at: datetime | None = None
    line_items: list[dict] | None = None


class ShopDescriptor(BaseModel):
    """Subset of GET /shop.json used to verify a connection."""

    model_config = ConfigDict(extra="allow")

    id: int
    name: str | None = None
    domain: str | None = None
    myshopify_domain: str | None = None
    email: str | None = None
    currency: str | None = None
    iana_timezone: str | None = None
    timezone: str | None = None
    plan_name: str | None = None
