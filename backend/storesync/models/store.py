from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storesync.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from storesync.models.tenant import Tenant

CONNECTION_STATES = ("connected", "disconnected", "error", "pending")
SYNC_FREQUENCIES = ("hourly", "every_4_hours", "every_12_hours", "daily", "weekly", "manual")


class Store(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A connected Shopify shop. Credentials are required while connected."""

    __tablename__ = "stores"
    __table_args__ = (
        CheckConstraint(
            "connection_state <> 'connected' OR encrypted_credentials IS NOT NULL",
            name="ck_stores_connected_has_credentials",
        ),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True
    )
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    store_name: Mapped[str] = mapped_column(String(255), nullable=False)
    shopify_shop_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    encrypted_credentials: Mapped[str | None] = mapped_column(Text, nullable=True)
    encryption_key_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    connection_state: Mapped[str] = mapped_column(String(50), default="pending", nullable=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_frequency: Mapped[str] = mapped_column(String(50), default="daily", nullable=False)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_log: Mapped[str | None] = mapped_column(Text, nullable=True)

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="stores")

    @property
    def is_connected(self) -> bool:
        return self.connection_state == "connected" and bool(self.encrypted_credentials)
