"""Active-job registry enforcing at most one running sync per store.

``InMemoryJobRegistry`` is enough for a single process: every method runs on
one event loop without awaiting in between check and set. ``RedisJobRegistry``
moves the lock into Redis so several API or scheduler processes can share it.
"""

from __future__ import annotations

import json
import uuid
from typing import Protocol

import redis.asyncio as aioredis
import structlog

from storesync.core.config import settings
from storesync.services.sync.job import SyncJob

logger = structlog.get_logger()


class JobRegistry(Protocol):
    async def try_acquire(self, job: SyncJob) -> bool: ...

    async def release(self, store_id: uuid.UUID, job_id: str) -> bool: ...

    async def get(self, store_id: uuid.UUID) -> SyncJob | None: ...

    async def find(self, job_id: str) -> SyncJob | None: ...

    async def list(self, tenant_id: uuid.UUID) -> list[SyncJob]: ...

    async def update(self, job: SyncJob) -> None: ...

    async def request_cancel(self, job_id: str) -> None: ...


class InMemoryJobRegistry:
    def __init__(self) -> None:
        self._by_store: dict[uuid.UUID, SyncJob] = {}

    async def try_acquire(self, job: SyncJob) -> bool:
        current = self._by_store.get(job.store_id)
        if current is not None and not current.is_terminal:
            return False
        self._by_store[job.store_id] = job
        return True

    async def release(self, store_id: uuid.UUID, job_id: str) -> bool:
        current = self._by_store.get(store_id)
        if current is None or current.id != job_id:
            return False
        del self._by_store[store_id]
        return True

    async def get(self, store_id: uuid.UUID) -> SyncJob | None:
        return self._by_store.get(store_id)

    async def find(self, job_id: str) -> SyncJob | None:
        for job in self._by_store.values():
            if job.id == job_id:
                return job
        return None

    async def list(self, tenant_id: uuid.UUID) -> list[SyncJob]:
        return [job for job in self._by_store.values() if job.tenant_id == tenant_id]

    async def update(self, job: SyncJob) -> None:
        # Jobs are shared by reference; nothing to write back.
        return None

    async def request_cancel(self, job_id: str) -> None:
        job = await self.find(job_id)
        if job is not None:
            job.cancel()


# Delete the lock only if it still holds the releasing job's id.
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

# Push the lock expiry forward only while it still holds the running job's id.
_EXTEND_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
end
return 0
"""


class RedisJobRegistry:
    """Distributed registry: ``SET NX EX`` lock per store plus JSON job snapshots."""

    def __init__(self, redis: aioredis.Redis | None = None, ttl_seconds: int | None = None):
        self._redis = redis or aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        self._ttl = ttl_seconds or settings.SYNC_LOCK_TTL_SECONDS

    @staticmethod
    def _lock_key(store_id) -> str:
        return f"sync:lock:{store_id}"

    @staticmethod
    def _job_key(job_id: str) -> str:
        return f"sync:job:{job_id}"

    @staticmethod
    def _tenant_key(tenant_id) -> str:
        return f"sync:tenant:{tenant_id}"

    @staticmethod
    def _cancel_key(job_id: str) -> str:
        return f"sync:cancel:{job_id}"

    async def _load(self, job_id: str) -> SyncJob | None:
        raw = await self._redis.get(self._job_key(job_id))
        if not raw:
            return None
        return SyncJob.from_snapshot(json.loads(raw))

    async def _store(self, job: SyncJob) -> None:
        await self._redis.set(self._job_key(job.id), json.dumps(job.snapshot()), ex=self._ttl)

    async def try_acquire(self, job: SyncJob) -> bool:
        acquired = await self._redis.set(self._lock_key(job.store_id), job.id, nx=True, ex=self._ttl)
        if not acquired:
            return False
        await self._store(job)
        await self._redis.sadd(self._tenant_key(job.tenant_id), job.id)
        return True

    async def release(self, store_id: uuid.UUID, job_id: str) -> bool:
        released = await self._redis.eval(_RELEASE_SCRIPT, 1, self._lock_key(store_id), job_id)
        job = await self._load(job_id)
        if job is not None:
            await self._redis.srem(self._tenant_key(job.tenant_id), job_id)
        # The cancel flag is left to expire so the owning process can still observe it.
        await self._redis.delete(self._job_key(job_id))
        return bool(released)

    async def get(self, store_id: uuid.UUID) -> SyncJob | None:
        job_id = await self._redis.get(self._lock_key(store_id))
        if not job_id:
            return None
        return await self._load(job_id)

    async def find(self, job_id: str) -> SyncJob | None:
        return await self._load(job_id)

    async def list(self, tenant_id: uuid.UUID) -> list[SyncJob]:
        jobs = []
        for job_id in await self._redis.smembers(self._tenant_key(tenant_id)):
            job = await self._load(job_id)
            if job is None:
                # Snapshot expired with its TTL; drop the dangling index entry.
                await self._redis.srem(self._tenant_key(tenant_id), job_id)
                continue
            jobs.append(job)
        return jobs

    async def update(self, job: SyncJob) -> None:
        """Publish the job's progress, keep its store lock alive and pick up remote cancels."""
        if await self._redis.exists(self._cancel_key(job.id)):
            if job.cancel():
                logger.info("sync.registry.remote_cancel", job_id=job.id, store_id=str(job.store_id))
        if job.is_terminal:
            return
        extended = await self._redis.eval(
            _EXTEND_SCRIPT, 1, self._lock_key(job.store_id), job.id, self._ttl * 1000
        )
        if not extended:
            logger.warning("sync.registry.lock_lost", job_id=job.id, store_id=str(job.store_id))
        await self._store(job)

    async def request_cancel(self, job_id: str) -> None:
        await self._redis.set(self._cancel_key(job_id), "1", ex=self._ttl)


def build_registry() -> JobRegistry:
    if settings.SYNC_REGISTRY_BACKEND == "redis":
        return RedisJobRegistry()
    return InMemoryJobRegistry()
