from storesync.services.sync.job import SyncJob, SyncKind, SyncStatus
from storesync.services.sync.orchestrator import SyncOrchestrator
from storesync.services.sync.registry import InMemoryJobRegistry, JobRegistry, RedisJobRegistry, build_registry
from storesync.services.sync.scheduler import SyncScheduler, is_sync_due

__all__ = [
    "SyncJob", "SyncKind", "SyncStatus",
    "SyncOrchestrator",
    "JobRegistry", "InMemoryJobRegistry", "RedisJobRegistry", "build_registry",
    "SyncScheduler", "is_sync_due",
]
