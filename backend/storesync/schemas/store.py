from pydantic import BaseModel, Field


class StoreConnectRequest(BaseModel):
    domain: str = Field(..., min_length=1, max_length=255)
    access_token: str = Field(..., min_length=1)
    sync_frequency: str = "daily"


class SyncSettingsUpdate(BaseModel):
    sync_frequency: str


class StoreResponse(BaseModel):
    id: str
    tenant_id: str
    domain: str
    store_name: str
    shopify_shop_id: int | None = None
    connection_state: str
    sync_frequency: str
    last_sync_at: str | None = None
    currency: str | None = None
    timezone: str | None = None
    error_log: str | None = None


class StoreTestResponse(BaseModel):
    store_id: str
    status: str
    message: str
    shop: dict | None = None
    counts: dict[str, int] | None = None


class WebhookResponse(BaseModel):
    topic: str
    action: str
    external_id: str | None = None
    affected: int
    errors: list[str] = []
