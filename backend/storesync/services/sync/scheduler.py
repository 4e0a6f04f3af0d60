"""Time-driven sync triggering plus best-effort maintenance sweeps.

Jobs (APScheduler, UTC):
  sync-check    every hour on the hour: trigger incremental syncs for due stores
  cleanup       daily at SCHEDULER_CLEANUP_HOUR: purge old sync history
  health-check  every SCHEDULER_HEALTH_CHECK_MINUTES: ping DB, verify credentials
"""

import uuid
from datetime import datetime, timedelta, timezone

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from storesync.core.config import settings
from storesync.core.encryption import get_access_token
from storesync.core.exceptions import ConflictError, InvalidCredential
from storesync.models import Store
from storesync.services.ingestion.gateway import PersistenceGateway
from storesync.services.shopify_client import ShopifyClient
from storesync.services.sync.job import SyncJob, SyncKind, SyncStatus
from storesync.services.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()

FREQUENCY_HOURS = {
    "hourly": 1,
    "every_4_hours": 4,
    "every_12_hours": 12,
    "daily": 24,
    "weekly": 168,
}


def is_sync_due(store: Store, now: datetime | None = None) -> bool:
    """True when the store's frequency interval has elapsed since its last sync.

    ``manual`` (or any unknown frequency) never fires; a store that has never
    synced is due immediately.
    """
    interval = FREQUENCY_HOURS.get(store.sync_frequency)
    if interval is None:
        return False
    if store.last_sync_at is None:
        return True

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    last = store.last_sync_at
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    hours_since = (now - last).total_seconds() / 3600
    return hours_since >= interval


class SyncScheduler:
    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        gateway: PersistenceGateway,
        client: ShopifyClient,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.client = client
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        orchestrator.add_listener(self.handle_job_finished)

    def start(self) -> None:
        self.scheduler.add_job(
            self.check_and_execute_scheduled_syncs,
            trigger=CronTrigger(minute=0, timezone="UTC"),
            id="sync-check",
            name="Scheduled store syncs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.run_cleanup,
            trigger=CronTrigger(hour=settings.SCHEDULER_CLEANUP_HOUR, minute=0, timezone="UTC"),
            id="cleanup",
            name="Sync history cleanup",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.run_health_checks,
            trigger=IntervalTrigger(minutes=settings.SCHEDULER_HEALTH_CHECK_MINUTES),
            id="health-check",
            name="Store health checks",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("scheduler.started", jobs=[job.id for job in self.scheduler.get_jobs()])

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler.stopped")

    def get_status(self) -> dict:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return {"running": self.scheduler.running, "jobs": jobs}

    # ------------------------------------------------------------------
    # Sync check
    # ------------------------------------------------------------------

    async def check_and_execute_scheduled_syncs(self, now: datetime | None = None) -> list[SyncJob]:
        """Trigger one incremental sync for every connected store that is due."""
        now = now or datetime.now(timezone.utc)
        try:
            stores = await self.gateway.list_connected_stores()
        except Exception:
            logger.exception("scheduler.sync_check.list_failed")
            return []

        due = [store for store in stores if is_sync_due(store, now)]
        logger.info("scheduler.sync_check", connected=len(stores), due=len(due))

        started = []
        for store in due:
            job = await self.execute_scheduled_sync(store)
            if job is not None:
                started.append(job)
        return started

    async def execute_scheduled_sync(self, store: Store) -> SyncJob | None:
        try:
            return await self.orchestrator.trigger_sync(
                store.tenant_id, store.id, SyncKind.INCREMENTAL, trigger="scheduled"
            )
        except ConflictError:
            logger.info("scheduler.sync_skipped.in_progress", store_id=str(store.id))
            return None
        except Exception as exc:
            logger.warning("scheduler.sync_trigger_failed", store_id=str(store.id), error=str(exc))
            rejected = SyncJob(
                store_id=store.id, tenant_id=store.tenant_id, kind=SyncKind.INCREMENTAL, trigger="scheduled"
            )
            rejected.fail(f"Scheduled sync could not start: {exc}")
            try:
                await self.gateway.save_sync_run(rejected)
            except Exception:
                logger.exception("scheduler.save_rejected_run_failed", store_id=str(store.id))
            await self.handle_sync_failure(store.id)
            return None

    # ------------------------------------------------------------------
    # Failure escalation
    # ------------------------------------------------------------------

    async def handle_job_finished(self, job: SyncJob) -> None:
        if job.trigger != "scheduled":
            return
        # Per-record errors on a completed run are not a sync failure.
        if job.status == SyncStatus.FAILED:
            await self.handle_sync_failure(job.store_id)

    async def handle_sync_failure(self, store_id: uuid.UUID) -> int:
        """Disable auto-sync for a store once scheduled failures reach the threshold."""
        since = datetime.now(timezone.utc) - timedelta(hours=settings.SCHEDULER_FAILURE_WINDOW_HOURS)
        try:
            failures = await self.gateway.count_recent_failures(store_id, since)
        except Exception:
            logger.exception("scheduler.failure_count_failed", store_id=str(store_id))
            return 0

        logger.warning("scheduler.sync_failure", store_id=str(store_id), recent_failures=failures)
        if failures >= settings.SCHEDULER_FAILURE_THRESHOLD:
            try:
                await self.gateway.mark_store_error(
                    store_id, f"Sync failed {failures} times. Automatic sync disabled."
                )
            except Exception:
                logger.exception("scheduler.store_disable_failed", store_id=str(store_id))
                return failures
            logger.error("scheduler.store_disabled", store_id=str(store_id), recent_failures=failures)
        return failures

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_cleanup(self) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=settings.SYNC_RUN_RETENTION_DAYS)
        try:
            purged = await self.gateway.purge_sync_runs(cutoff)
        except Exception:
            logger.exception("scheduler.cleanup.failed")
            return 0
        logger.info("scheduler.cleanup.done", purged=purged, cutoff=cutoff.isoformat())
        return purged

    async def run_health_checks(self) -> dict:
        summary = {"database": "ok", "checked": 0, "failed": []}
        try:
            await self.gateway.ping()
        except Exception as exc:
            summary["database"] = "error"
            logger.error("scheduler.health.database_failed", error=str(exc))
            return summary

        try:
            stores = await self.gateway.list_connected_stores()
        except Exception:
            logger.exception("scheduler.health.list_failed")
            return summary

        for store in stores:
            summary["checked"] += 1
            try:
                await self.client.verify_connection(store.domain, get_access_token(store.encrypted_credentials))
            except InvalidCredential as exc:
                summary["failed"].append(str(store.id))
                logger.warning("scheduler.health.invalid_credential", store_id=str(store.id), error=str(exc))
                try:
                    await self.gateway.mark_store_error(store.id, f"Health check failed: {exc}")
                except Exception:
                    logger.exception("scheduler.health.mark_error_failed", store_id=str(store.id))
            except Exception as exc:
                summary["failed"].append(str(store.id))
                logger.warning("scheduler.health.check_failed", store_id=str(store.id), error=str(exc))

        logger.info("scheduler.health.done", checked=summary["checked"], failed=len(summary["failed"]))
        return summary
