"""Persistence gateway: the only writer of mirrored commerce records.

Upserts use ``INSERT ... ON CONFLICT DO UPDATE`` on each table's unique key,
picking the PostgreSQL or SQLite flavour from the bound dialect.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storesync.core.exceptions import PersistenceError
from storesync.models import Customer, Order, OrderLineItem, Product, Store, SyncRun
from storesync.services.ingestion.records import BaseRecord, EntityKind, OrderRecord

logger = structlog.get_logger()

# Errors that mean "this record could not be written" rather than a broken gateway.
_RECORD_FAILURES = (SQLAlchemyError, ValueError, TypeError, OverflowError)

_ENTITIES = {
    EntityKind.CUSTOMER: (Customer, ("tenant_id", "shopify_customer_id")),
    EntityKind.PRODUCT: (Product, ("tenant_id", "shopify_product_id")),
    EntityKind.ORDER: (Order, ("tenant_id", "shopify_order_id")),
    EntityKind.LINE_ITEM: (OrderLineItem, ("order_id", "shopify_line_item_id")),
}

_IMMUTABLE_COLUMNS = {"id", "tenant_id", "created_at"}


@dataclass
class RecordError:
    external_id: str
    message: str

    def __str__(self) -> str:
        return f"{self.external_id}: {self.message}"


@dataclass
class UpsertResult:
    written: int = 0
    errors: list[RecordError] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PersistenceGateway:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------------

    def _upsert_statement(self, session: AsyncSession, kind: EntityKind, rows: list[dict]):
        model, keys = _ENTITIES[kind]
        insert = pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert
        stmt = insert(model).values(rows)
        skip = _IMMUTABLE_COLUMNS | set(keys)
        set_ = {col: stmt.excluded[col] for col in rows[0] if col not in skip}
        set_["updated_at"] = func.now()
        return stmt.on_conflict_do_update(index_elements=list(keys), set_=set_)

    async def bulk_upsert(self, kind: EntityKind, records: list[BaseRecord]) -> UpsertResult:
        """Upsert a batch; individual record failures are reported, never raised.

        The batch is written in one statement. If that fails, each record is
        retried in its own transaction so one bad record cannot sink the rest.
        """
        if not records:
            return UpsertResult()

        _, keys = _ENTITIES[kind]
        # A batch may carry the same key twice (e.g. a record edited mid-page); last one wins.
        deduped: dict[tuple, BaseRecord] = {}
        for record in records:
            row = record.to_row()
            deduped[tuple(row[k] for k in keys)] = record
        batch = list(deduped.values())

        try:
            async with self._session_factory() as session:
                await session.execute(self._upsert_statement(session, kind, [r.to_row() for r in batch]))
                await session.commit()
            return UpsertResult(written=len(batch))
        except _RECORD_FAILURES as exc:
            logger.warning(
                "gateway.bulk_upsert.batch_failed",
                kind=kind.value,
                size=len(batch),
                error=str(exc).splitlines()[0],
            )

        result = UpsertResult()
        for record in batch:
            try:
                async with self._session_factory() as session:
                    await session.execute(self._upsert_statement(session, kind, [record.to_row()]))
                    await session.commit()
                result.written += 1
            except _RECORD_FAILURES as exc:
                message = str(exc).splitlines()[0]
                logger.warning(
                    "gateway.bulk_upsert.record_failed",
                    kind=kind.value,
                    external_id=record.external_id,
                    error=message,
                )
                result.errors.append(RecordError(external_id=record.external_id, message=message))
        return result

    async def upsert_order(self, order: OrderRecord) -> uuid.UUID:
        """Upsert one order and return the local id of the stored row."""
        try:
            async with self._session_factory() as session:
                stmt = self._upsert_statement(session, EntityKind.ORDER, [order.to_row()]).returning(Order.id)
                order_id = (await session.execute(stmt)).scalar_one()
                await session.commit()
        except _RECORD_FAILURES as exc:
            raise PersistenceError(
                f"Order {order.external_id} could not be saved: {str(exc).splitlines()[0]}",
                external_id=order.external_id,
            ) from exc
        return order_id

    async def delete_by_external_id(
        self, kind: EntityKind, tenant_id: uuid.UUID, store_id: uuid.UUID, external_id
    ) -> int:
        """Delete a mirrored record by its Shopify id. Absent records are not an error."""
        if kind == EntityKind.LINE_ITEM:
            raise ValueError("Line items are deleted with their order")
        model, keys = _ENTITIES[kind]
        external_col = getattr(model, keys[1])
        where = (model.tenant_id == tenant_id, model.store_id == store_id, external_col == int(external_id))

        async with self._session_factory() as session:
            if kind == EntityKind.ORDER:
                order_ids = select(Order.id).where(*where)
                await session.execute(delete(OrderLineItem).where(OrderLineItem.order_id.in_(order_ids)))
            result = await session.execute(delete(model).where(*where))
            deleted = result.rowcount or 0
            await session.commit()
        return deleted

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    async def get_store(self, tenant_id: uuid.UUID, store_id: uuid.UUID) -> Store | None:
        async with self._session_factory() as session:
            stmt = select(Store).where(Store.id == store_id, Store.tenant_id == tenant_id)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def get_store_by_id(self, store_id: uuid.UUID) -> Store | None:
        async with self._session_factory() as session:
            return await session.get(Store, store_id)

    async def list_stores(self, tenant_id: uuid.UUID, store_id: uuid.UUID | None = None) -> list[Store]:
        async with self._session_factory() as session:
            stmt = select(Store).where(Store.tenant_id == tenant_id)
            if store_id:
                stmt = stmt.where(Store.id == store_id)
            stmt = stmt.order_by(Store.created_at)
            return list((await session.execute(stmt)).scalars().all())

    async def list_connected_stores(self) -> list[Store]:
        async with self._session_factory() as session:
            stmt = select(Store).where(
                Store.connection_state == "connected",
                Store.encrypted_credentials.is_not(None),
            )
            return list((await session.execute(stmt)).scalars().all())

    async def mark_store_synced(self, store_id: uuid.UUID, synced_at: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Store)
                .where(Store.id == store_id)
                .values(last_sync_at=synced_at, connection_state="connected", error_log=None)
            )
            await session.commit()

    async def mark_store_error(self, store_id: uuid.UUID, message: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Store).where(Store.id == store_id).values(connection_state="error", error_log=message)
            )
            await session.commit()

    # ------------------------------------------------------------------
    # Sync history
    # ------------------------------------------------------------------

    async def save_sync_run(self, job) -> SyncRun:
        """Persist the terminal snapshot of a sync job."""
        run = SyncRun(
            tenant_id=job.tenant_id,
            store_id=job.store_id,
            job_id=job.id,
            kind=job.kind.value,
            trigger=job.trigger,
            status=job.status.value,
            started_at=job.started_at,
            completed_at=job.completed_at or _utcnow(),
            total_items=job.total_items,
            processed_items=job.processed_items,
            error_count=len(job.errors),
            errors=list(job.errors),
        )
        async with self._session_factory() as session:
            session.add(run)
            await session.commit()
            await session.refresh(run)
        return run

    async def get_sync_run(self, tenant_id: uuid.UUID, run_id: uuid.UUID) -> SyncRun | None:
        async with self._session_factory() as session:
            stmt = select(SyncRun).where(SyncRun.id == run_id, SyncRun.tenant_id == tenant_id)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def count_recent_failures(self, store_id: uuid.UUID, since: datetime) -> int:
        """Count failed scheduled runs since ``since`` and after the last completed run."""
        async with self._session_factory() as session:
            last_clean = (
                await session.execute(
                    select(func.max(SyncRun.completed_at)).where(
                        SyncRun.store_id == store_id,
                        SyncRun.status == "completed",
                    )
                )
            ).scalar_one_or_none()

            stmt = select(func.count()).select_from(SyncRun).where(
                SyncRun.store_id == store_id,
                SyncRun.trigger == "scheduled",
                SyncRun.completed_at >= since,
                SyncRun.status == "failed",
            )
            if last_clean is not None:
                stmt = stmt.where(SyncRun.completed_at > last_clean)
            return (await session.execute(stmt)).scalar_one()

    async def purge_sync_runs(self, before: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(delete(SyncRun).where(SyncRun.completed_at < before))
            purged = result.rowcount or 0
            await session.commit()
        return purged

    async def list_sync_runs(
        self,
        tenant_id: uuid.UUID,
        store_id: uuid.UUID | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[SyncRun], int]:
        async with self._session_factory() as session:
            base = select(SyncRun).where(SyncRun.tenant_id == tenant_id)
            if store_id:
                base = base.where(SyncRun.store_id == store_id)
            total = (await session.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
            stmt = base.order_by(SyncRun.completed_at.desc()).offset((page - 1) * page_size).limit(page_size)
            runs = list((await session.execute(stmt)).scalars().all())
        return runs, total

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def sync_statistics(
        self,
        tenant_id: uuid.UUID,
        store_id: uuid.UUID | None,
        start: datetime,
        end: datetime,
    ) -> dict:
        def scoped(model):
            stmt = select(func.count()).select_from(model).where(model.tenant_id == tenant_id)
            if store_id:
                stmt = stmt.where(model.store_id == store_id)
            return stmt

        async with self._session_factory() as session:
            orders_count = (
                await session.execute(scoped(Order).where(Order.shopify_created_at.between(start, end)))
            ).scalar_one()
            customers_count = (
                await session.execute(scoped(Customer).where(Customer.shopify_created_at.between(start, end)))
            ).scalar_one()
            products_count = (await session.execute(scoped(Product))).scalar_one()

            last_sync = select(func.max(Store.last_sync_at)).where(Store.tenant_id == tenant_id)
            if store_id:
                last_sync = last_sync.where(Store.id == store_id)
            last_sync_at = (await session.execute(last_sync)).scalar_one_or_none()

        return {
            "orders_count": orders_count,
            "customers_count": customers_count,
            "products_count": products_count,
            "last_sync_at": last_sync_at,
        }

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
