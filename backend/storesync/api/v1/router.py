from fastapi import APIRouter

from storesync.api.v1 import health, stores, sync, webhooks

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(sync.router)
api_router.include_router(stores.router)
api_router.include_router(webhooks.router)
api_router.include_router(health.router)
