import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from storesync.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class StoreScopedMixin(TimestampMixin):
    """Common columns for records mirrored from a connected store."""

    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id"), nullable=False, index=True
    )
    shopify_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shopify_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Customer(Base, UUIDPrimaryKeyMixin, StoreScopedMixin):
    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("tenant_id", "shopify_customer_id", name="uq_customers_tenant_external"),)

    shopify_customer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    total_spent: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0, nullable=False)
    orders_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_order_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_order_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified_email: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    tax_exempt: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    addresses: Mapped[list | None] = mapped_column(JSON, nullable=True)
    default_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class Product(Base, UUIDPrimaryKeyMixin, StoreScopedMixin):
    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("tenant_id", "shopify_product_id", name="uq_products_tenant_external"),)

    shopify_product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    handle: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    published_scope: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)
    variants: Mapped[list | None] = mapped_column(JSON, nullable=True)
    options: Mapped[list | None] = mapped_column(JSON, nullable=True)
    images: Mapped[list | None] = mapped_column(JSON, nullable=True)
    image: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0, nullable=False)
    compare_at_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0, nullable=False)
    inventory_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    inventory_policy: Mapped[str | None] = mapped_column(String(50), nullable=True)
    inventory_management: Mapped[str | None] = mapped_column(String(50), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Order(Base, UUIDPrimaryKeyMixin, StoreScopedMixin):
    __tablename__ = "orders"
    __table_args__ = (UniqueConstraint("tenant_id", "shopify_order_id", name="uq_orders_tenant_external"),)

    shopify_order_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    shopify_customer_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    order_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    financial_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fulfillment_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    total_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0, nullable=False)
    subtotal_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0, nullable=False)
    total_tax: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0, nullable=False)
    total_discounts: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0, nullable=False)
    total_weight: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    taxes_included: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    confirmed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    test: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    gateway: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    landing_site: Mapped[str | None] = mapped_column(Text, nullable=True)
    referring_site: Mapped[str | None] = mapped_column(Text, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)
    tax_lines: Mapped[list | None] = mapped_column(JSON, nullable=True)
    discount_codes: Mapped[list | None] = mapped_column(JSON, nullable=True)
    shipping_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    billing_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class OrderLineItem(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "order_line_items"
    __table_args__ = (UniqueConstraint("order_id", "shopify_line_item_id", name="uq_order_line_items_order_external"),)

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    shopify_line_item_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    shopify_product_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    shopify_variant_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    variant_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sku: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0, nullable=False)
    total_discount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0, nullable=False)
    grams: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    taxable: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    requires_shipping: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    fulfillment_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fulfillment_service: Mapped[str | None] = mapped_column(String(255), nullable=True)
    properties: Mapped[list | None] = mapped_column(JSON, nullable=True)
    tax_lines: Mapped[list | None] = mapped_column(JSON, nullable=True)
