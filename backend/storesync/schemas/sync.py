import uuid

from pydantic import BaseModel


class SyncTriggerRequest(BaseModel):
    store_id: uuid.UUID


class SyncJobResponse(BaseModel):
    id: str
    store_id: str
    tenant_id: str
    kind: str
    trigger: str
    status: str
    started_at: str
    completed_at: str | None = None
    progress: int
    total_items: int
    processed_items: int
    errors: list[str]


class SyncTriggerResponse(BaseModel):
    job: SyncJobResponse
    message: str


class StoreSyncStatus(BaseModel):
    id: str
    domain: str
    store_name: str
    connection_state: str
    sync_frequency: str
    last_sync_at: str | None = None
    error_log: str | None = None
    active_job: SyncJobResponse | None = None


class SyncStatusResponse(BaseModel):
    stores: list[StoreSyncStatus]
    total_stores: int
    connected_stores: int
    active_syncs: int
    jobs: list[SyncJobResponse]


class SyncStatisticsResponse(BaseModel):
    orders_count: int
    customers_count: int
    products_count: int
    period: str
    last_sync_at: str | None = None


class SyncRunResponse(BaseModel):
    id: str
    store_id: str
    job_id: str | None = None
    kind: str
    trigger: str
    status: str
    started_at: str | None = None
    completed_at: str | None = None
    total_items: int
    processed_items: int
    error_count: int
    errors: list[str] | None = None
