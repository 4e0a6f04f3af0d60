"""Initial schema: tenants, stores, mirrored commerce records, sync history

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON, UUID

from alembic import op

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _store_scoped() -> list[sa.Column]:
    return [
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("store_id", UUID(as_uuid=True), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("shopify_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shopify_updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(15, 2), server_default="0", nullable=False)


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), unique=True, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "stores",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("domain", sa.String(255), unique=True, nullable=False),
        sa.Column("store_name", sa.String(255), nullable=False),
        sa.Column("shopify_shop_id", sa.BigInteger, nullable=True),
        sa.Column("encrypted_credentials", sa.Text, nullable=True),
        sa.Column("encryption_key_version", sa.Integer, server_default="1", nullable=False),
        sa.Column("connection_state", sa.String(50), server_default="pending", nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_frequency", sa.String(50), server_default="daily", nullable=False),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("timezone", sa.String(100), nullable=True),
        sa.Column("error_log", sa.Text, nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "connection_state <> 'connected' OR encrypted_credentials IS NOT NULL",
            name="ck_stores_connected_has_credentials",
        ),
    )
    op.create_index("ix_stores_tenant_id", "stores", ["tenant_id"])

    op.create_table(
        "customers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        *_store_scoped(),
        sa.Column("shopify_customer_id", sa.BigInteger, nullable=False),
        sa.Column("first_name", sa.String(255), nullable=True),
        sa.Column("last_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("state", sa.String(50), nullable=True),
        _money("total_spent"),
        sa.Column("orders_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("last_order_id", sa.BigInteger, nullable=True),
        sa.Column("last_order_name", sa.String(255), nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("verified_email", sa.Boolean, nullable=True),
        sa.Column("tax_exempt", sa.Boolean, nullable=True),
        sa.Column("tags", sa.Text, nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("addresses", JSON, nullable=True),
        sa.Column("default_address", JSON, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "shopify_customer_id", name="uq_customers_tenant_external"),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])
    op.create_index("ix_customers_store_id", "customers", ["store_id"])
    op.create_index("ix_customers_email", "customers", ["email"])

    op.create_table(
        "products",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        *_store_scoped(),
        sa.Column("shopify_product_id", sa.BigInteger, nullable=False),
        sa.Column("title", sa.String(512), nullable=True),
        sa.Column("body_html", sa.Text, nullable=True),
        sa.Column("vendor", sa.String(255), nullable=True),
        sa.Column("product_type", sa.String(255), nullable=True),
        sa.Column("handle", sa.String(512), nullable=True),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column("published_scope", sa.String(50), nullable=True),
        sa.Column("tags", sa.Text, nullable=True),
        sa.Column("variants", JSON, nullable=True),
        sa.Column("options", JSON, nullable=True),
        sa.Column("images", JSON, nullable=True),
        sa.Column("image", JSON, nullable=True),
        _money("price"),
        _money("compare_at_price"),
        sa.Column("inventory_quantity", sa.Integer, server_default="0", nullable=False),
        sa.Column("inventory_policy", sa.String(50), nullable=True),
        sa.Column("inventory_management", sa.String(50), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "shopify_product_id", name="uq_products_tenant_external"),
    )
    op.create_index("ix_products_tenant_id", "products", ["tenant_id"])
    op.create_index("ix_products_store_id", "products", ["store_id"])

    op.create_table(
        "orders",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        *_store_scoped(),
        sa.Column("shopify_order_id", sa.BigInteger, nullable=False),
        sa.Column("shopify_customer_id", sa.BigInteger, nullable=True),
        sa.Column("order_number", sa.Integer, nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("financial_status", sa.String(50), nullable=True),
        sa.Column("fulfillment_status", sa.String(50), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        _money("total_price"),
        _money("subtotal_price"),
        _money("total_tax"),
        _money("total_discounts"),
        sa.Column("total_weight", sa.Integer, server_default="0", nullable=False),
        sa.Column("taxes_included", sa.Boolean, nullable=True),
        sa.Column("confirmed", sa.Boolean, nullable=True),
        sa.Column("test", sa.Boolean, nullable=True),
        sa.Column("gateway", sa.String(255), nullable=True),
        sa.Column("source_name", sa.String(255), nullable=True),
        sa.Column("landing_site", sa.Text, nullable=True),
        sa.Column("referring_site", sa.Text, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("tags", sa.Text, nullable=True),
        sa.Column("tax_lines", JSON, nullable=True),
        sa.Column("discount_codes", JSON, nullable=True),
        sa.Column("shipping_address", JSON, nullable=True),
        sa.Column("billing_address", JSON, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "shopify_order_id", name="uq_orders_tenant_external"),
    )
    op.create_index("ix_orders_tenant_id", "orders", ["tenant_id"])
    op.create_index("ix_orders_store_id", "orders", ["store_id"])
    op.create_index("ix_orders_shopify_customer_id", "orders", ["shopify_customer_id"])

    op.create_table(
        "order_line_items",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("shopify_line_item_id", sa.BigInteger, nullable=False),
        sa.Column("shopify_product_id", sa.BigInteger, nullable=True),
        sa.Column("shopify_variant_id", sa.BigInteger, nullable=True),
        sa.Column("title", sa.String(512), nullable=True),
        sa.Column("name", sa.String(512), nullable=True),
        sa.Column("variant_title", sa.String(255), nullable=True),
        sa.Column("vendor", sa.String(255), nullable=True),
        sa.Column("product_type", sa.String(255), nullable=True),
        sa.Column("sku", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer, server_default="0", nullable=False),
        _money("price"),
        _money("total_discount"),
        sa.Column("grams", sa.Integer, server_default="0", nullable=False),
        sa.Column("taxable", sa.Boolean, nullable=True),
        sa.Column("requires_shipping", sa.Boolean, nullable=True),
        sa.Column("fulfillment_status", sa.String(50), nullable=True),
        sa.Column("fulfillment_service", sa.String(255), nullable=True),
        sa.Column("properties", JSON, nullable=True),
        sa.Column("tax_lines", JSON, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("order_id", "shopify_line_item_id", name="uq_order_line_items_order_external"),
    )
    op.create_index("ix_order_line_items_order_id", "order_line_items", ["order_id"])

    op.create_table(
        "sync_runs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("store_id", UUID(as_uuid=True), sa.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False),
        sa.Column("job_id", sa.String(64), nullable=True),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("trigger", sa.String(20), server_default="manual", nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_items", sa.Integer, server_default="0", nullable=False),
        sa.Column("processed_items", sa.Integer, server_default="0", nullable=False),
        sa.Column("error_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("errors", JSON, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sync_runs_tenant_id", "sync_runs", ["tenant_id"])
    op.create_index("ix_sync_runs_store_id", "sync_runs", ["store_id"])
    op.create_index("ix_sync_runs_job_id", "sync_runs", ["job_id"])
    op.create_index("ix_sync_runs_completed_at", "sync_runs", ["completed_at"])


def downgrade() -> None:
    op.drop_table("sync_runs")
    op.drop_table("order_line_items")
    op.drop_table("orders")
    op.drop_table("products")
    op.drop_table("customers")
    op.drop_table("stores")
    op.drop_table("tenants")
