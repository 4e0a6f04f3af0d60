"""Sync orchestrator: drives full and incremental syncs for connected stores.

A triggered sync runs as a background ``asyncio.Task``. Callers only ever see
the ``SyncJob`` it mutates, through the registry or ``get_status``.

Per job:
  customers -> products -> orders, page by page (``since_id`` cursor), each
  page transformed and persisted in fixed-size batches. Record failures land in
  ``job.errors``; a kind whose source stays unavailable after retries is
  skipped; an invalid credential fails the whole job.
"""

import asyncio
import math
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import structlog

from storesync.core.config import settings
from storesync.core.encryption import get_access_token
from storesync.core.exceptions import (
    ConflictError,
    InvalidCredential,
    NotFoundError,
    PreconditionError,
    SourceUnavailable,
)
from storesync.models import Store
from storesync.services.ingestion.gateway import PersistenceGateway
from storesync.services.ingestion.pipeline import persist_customers, persist_orders, persist_products
from storesync.services.ingestion.records import ResourceKind
from storesync.services.shopify_client import ShopifyClient
from storesync.services.sync.job import SyncJob, SyncKind, SyncStatus
from storesync.services.sync.registry import InMemoryJobRegistry, JobRegistry

logger = structlog.get_logger()

JobListener = Callable[[SyncJob], Awaitable[None]]

# Share of overall progress owned by each kind, as (start, end) percentages.
PROGRESS_BANDS = {
    ResourceKind.CUSTOMERS: (0, 25),
    ResourceKind.PRODUCTS: (25, 50),
    ResourceKind.ORDERS: (50, 100),
}
BATCH_SIZES = {
    ResourceKind.CUSTOMERS: 100,
    ResourceKind.PRODUCTS: 50,
    ResourceKind.ORDERS: 50,
}
# Records per kind assumed when turning fetched counts into a progress estimate.
ESTIMATED_RECORDS_PER_KIND = 1000

_PERSISTERS = {
    ResourceKind.CUSTOMERS: persist_customers,
    ResourceKind.PRODUCTS: persist_products,
    ResourceKind.ORDERS: persist_orders,
}

STATISTICS_PERIODS = {"7d": 7, "30d": 30, "90d": 90}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _store_summary(store: Store, job: SyncJob | None) -> dict:
    last_sync = _as_utc(store.last_sync_at)
    return {
        "id": str(store.id),
        "domain": store.domain,
        "store_name": store.store_name,
        "connection_state": store.connection_state,
        "sync_frequency": store.sync_frequency,
        "last_sync_at": last_sync.isoformat() if last_sync else None,
        "error_log": store.error_log,
        "active_job": job.snapshot() if job else None,
    }


class SyncOrchestrator:
    def __init__(
        self,
        gateway: PersistenceGateway,
        client: ShopifyClient,
        registry: JobRegistry | None = None,
    ):
        self.gateway = gateway
        self.client = client
        self.registry = registry or InMemoryJobRegistry()
        self._tasks: dict[str, asyncio.Task] = {}
        self._jobs: dict[str, SyncJob] = {}
        self._listeners: list[JobListener] = []

    def add_listener(self, listener: JobListener) -> None:
        """Register a coroutine called with every job once it is terminal."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Caller-facing operations
    # ------------------------------------------------------------------

    async def trigger_sync(
        self,
        tenant_id: uuid.UUID,
        store_id: uuid.UUID,
        kind: SyncKind | str,
        *,
        trigger: str = "manual",
    ) -> SyncJob:
        """Start a sync in the background and return its job immediately."""
        kind = SyncKind(kind)
        store = await self.gateway.get_store(tenant_id, store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        if store.connection_state != "connected" or not store.encrypted_credentials:
            raise PreconditionError(f"Store {store.domain} is not connected")

        job = SyncJob(store_id=store.id, tenant_id=tenant_id, kind=kind, trigger=trigger)
        if not await self.registry.try_acquire(job):
            raise ConflictError(f"Sync already in progress for store {store.domain}")

        self._jobs[job.id] = job
        task = asyncio.create_task(self._run(job, store), name=f"sync-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._forget(job_id))

        logger.info(
            "sync.job.triggered",
            sync_job_id=job.id,
            store_id=str(store.id),
            tenant_id=str(tenant_id),
            kind=kind.value,
            trigger=trigger,
        )
        return job

    def _forget(self, job_id: str) -> None:
        self._tasks.pop(job_id, None)
        self._jobs.pop(job_id, None)

    async def start_full_sync(self, store_id: uuid.UUID, *, trigger: str = "manual") -> SyncJob:
        return await self._start_for_store(store_id, SyncKind.FULL, trigger)

    async def start_incremental_sync(self, store_id: uuid.UUID, *, trigger: str = "manual") -> SyncJob:
        return await self._start_for_store(store_id, SyncKind.INCREMENTAL, trigger)

    async def _start_for_store(self, store_id: uuid.UUID, kind: SyncKind, trigger: str) -> SyncJob:
        store = await self.gateway.get_store_by_id(store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        return await self.trigger_sync(store.tenant_id, store.id, kind, trigger=trigger)

    async def cancel_sync(self, job_id: str, tenant_id: uuid.UUID) -> bool:
        """Cancel an active job. Returns False when no matching job is active.

        Cancellation is cooperative: an in-flight page fetch or batch write
        finishes, then the job stops before its next page or kind.
        """
        job = self._jobs.get(job_id) or await self.registry.find(job_id)
        if job is None or job.tenant_id != tenant_id or job.is_terminal:
            return False

        if job_id in self._jobs:
            job.cancel()
        else:
            await self.registry.request_cancel(job_id)
        await self.registry.release(job.store_id, job_id)
        logger.info("sync.job.cancelled", sync_job_id=job_id, store_id=str(job.store_id))
        return True

    async def retry_sync(self, run_id: uuid.UUID, tenant_id: uuid.UUID) -> SyncJob:
        """Re-trigger the kind of a recorded run that failed, was cancelled or had errors."""
        run = await self.gateway.get_sync_run(tenant_id, run_id)
        if run is None:
            raise NotFoundError(f"Sync run {run_id} not found")
        if run.status == SyncStatus.COMPLETED.value and run.error_count == 0:
            raise PreconditionError("Sync run completed cleanly; nothing to retry")
        return await self.trigger_sync(tenant_id, run.store_id, run.kind)

    async def get_job(self, job_id: str, tenant_id: uuid.UUID) -> SyncJob | None:
        job = self._jobs.get(job_id) or await self.registry.find(job_id)
        if job is None or job.tenant_id != tenant_id:
            return None
        return job

    async def get_status(self, tenant_id: uuid.UUID, store_id: uuid.UUID | None = None) -> dict:
        stores = await self.gateway.list_stores(tenant_id, store_id)
        jobs = [
            job for job in await self.registry.list(tenant_id)
            if not job.is_terminal and (store_id is None or job.store_id == store_id)
        ]
        by_store = {job.store_id: job for job in jobs}
        return {
            "stores": [_store_summary(s, by_store.get(s.id)) for s in stores],
            "total_stores": len(stores),
            "connected_stores": sum(1 for s in stores if s.is_connected),
            "active_syncs": len(jobs),
            "jobs": [job.snapshot() for job in jobs],
        }

    async def get_sync_statistics(
        self,
        tenant_id: uuid.UUID,
        store_id: uuid.UUID | None = None,
        period: str = "30d",
    ) -> dict:
        if period not in STATISTICS_PERIODS:
            period = "30d"
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=STATISTICS_PERIODS[period])
        stats = await self.gateway.sync_statistics(tenant_id, store_id, start, end)
        last_sync = _as_utc(stats["last_sync_at"])
        return {
            "orders_count": stats["orders_count"],
            "customers_count": stats["customers_count"],
            "products_count": stats["products_count"],
            "period": period,
            "last_sync_at": last_sync.isoformat() if last_sync else None,
        }

    async def get_sync_history(
        self,
        tenant_id: uuid.UUID,
        store_id: uuid.UUID | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict:
        runs, total = await self.gateway.list_sync_runs(tenant_id, store_id, page=page, page_size=page_size)
        return {
            "items": runs,
            "total": total,
            "page": page,
            "page_size": page_size,
            "pages": math.ceil(total / page_size) if page_size else 0,
        }

    async def wait_idle(self) -> None:
        """Wait until every background sync task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("sync.orchestrator.shutdown", cancelled_tasks=len(tasks))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _since_date(self, job: SyncJob, store: Store) -> datetime | None:
        if job.kind == SyncKind.FULL or store.last_sync_at is None:
            return None
        overlap = timedelta(minutes=settings.SYNC_INCREMENTAL_OVERLAP_MINUTES)
        return _as_utc(store.last_sync_at) - overlap

    async def _run(self, job: SyncJob, store: Store) -> None:
        log = logger.bind(sync_job_id=job.id, store_id=str(job.store_id), tenant_id=str(job.tenant_id))
        try:
            job.mark_running()
            await self.registry.update(job)
            log.info("sync.job.start", kind=job.kind.value, domain=store.domain)

            access_token = get_access_token(store.encrypted_credentials)
            since = self._since_date(job, store)
            aborted: list[ResourceKind] = []

            for resource in ResourceKind:
                await self.registry.update(job)
                if job.is_terminal:
                    break
                if not await self._sync_resource(job, store, access_token, resource, since, log):
                    aborted.append(resource)

            if job.status == SyncStatus.CANCELLED:
                log.info("sync.job.stopped_after_cancel", processed_items=job.processed_items)
            elif len(aborted) == len(ResourceKind):
                job.fail("Sync failed: no resource kind could be fetched")
                await self._mark_store_error(store, job.errors[-1], log)
            else:
                # A skipped kind leaves last_sync_at alone so the next incremental pass covers it.
                if not aborted:
                    await self.gateway.mark_store_synced(store.id, datetime.now(timezone.utc))
                job.complete()
        except asyncio.CancelledError:
            job.cancel()
            log.info("sync.job.task_cancelled")
            raise
        except InvalidCredential as exc:
            job.fail(f"Invalid credential: {exc}")
            await self._mark_store_error(store, str(exc), log)
        except Exception as exc:
            log.exception("sync.job.crashed")
            job.fail(f"Sync failed: {exc}")
            await self._mark_store_error(store, str(exc), log)
        finally:
            await self._finalize(job, log)

    async def _sync_resource(
        self,
        job: SyncJob,
        store: Store,
        access_token: str,
        resource: ResourceKind,
        since: datetime | None,
        log,
    ) -> bool:
        """Page through one kind. Returns False if the source gave up on it."""
        band_start, band_end = PROGRESS_BANDS[resource]
        batch_size = BATCH_SIZES[resource]
        persist = _PERSISTERS[resource]
        limit = min(settings.SHOPIFY_PAGE_LIMIT, 250)

        params: dict = {}
        if since is not None and resource != ResourceKind.PRODUCTS:
            params["created_at_min"] = since
        if resource == ResourceKind.ORDERS:
            params["status"] = "any"
        if resource == ResourceKind.PRODUCTS:
            params["published_status"] = settings.SHOPIFY_PRODUCT_PUBLISHED_STATUS

        log.info(f"sync.{resource.value}.start", since=since.isoformat() if since else None)
        since_id = None
        fetched = 0

        while True:
            await self.registry.update(job)
            if job.is_terminal:
                return True

            try:
                page = await self.client.fetch_page(
                    store.domain, access_token, resource, limit=limit, since_id=since_id, **params
                )
            except SourceUnavailable as exc:
                job.add_error(f"{resource.value.capitalize()} sync failed: {exc}")
                log.warning(f"sync.{resource.value}.aborted", error=str(exc), fetched=fetched)
                return False

            if job.is_terminal:
                return True
            if not page:
                break

            for offset in range(0, len(page), batch_size):
                batch = page[offset:offset + batch_size]
                outcome = await persist(self.gateway, batch, job.tenant_id, job.store_id)
                job.record_items(len(batch), outcome.written)
                for error in outcome.errors:
                    job.add_error(error)

            fetched += len(page)
            share = min(fetched / ESTIMATED_RECORDS_PER_KIND, 1.0)
            job.advance_progress(band_start + (band_end - band_start) * share)

            # A short page is the last one. A total that is an exact multiple of the
            # limit costs one extra request, which comes back empty.
            if len(page) < limit:
                break
            since_id = page[-1].get("id") if isinstance(page[-1], dict) else None
            if since_id is None:
                job.add_error(f"{resource.value.capitalize()} sync stopped: last record on page has no id")
                return False

        job.advance_progress(band_end)
        await self.registry.update(job)
        log.info(f"sync.{resource.value}.done", fetched=fetched)
        return True

    async def _mark_store_error(self, store: Store, message: str, log) -> None:
        try:
            await self.gateway.mark_store_error(store.id, message)
        except Exception:
            log.exception("sync.job.mark_store_error_failed")

    async def _finalize(self, job: SyncJob, log) -> None:
        """Cleanup that runs on every exit path: release, record, notify."""
        if not job.is_terminal:
            job.fail("Sync ended without reaching a terminal state")

        try:
            await self.registry.release(job.store_id, job.id)
        except Exception:
            log.exception("sync.job.release_failed")

        try:
            await self.gateway.save_sync_run(job)
        except Exception:
            log.exception("sync.job.save_run_failed")

        for listener in list(self._listeners):
            try:
                await listener(job)
            except Exception:
                log.exception("sync.job.listener_failed")

        log.info(
            "sync.job.finished",
            status=job.status.value,
            progress=job.progress,
            total_items=job.total_items,
            processed_items=job.processed_items,
            error_count=len(job.errors),
        )
