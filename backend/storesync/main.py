from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storesync.api.v1.router import api_router
from storesync.core.config import settings
from storesync.core.database import async_session_factory, engine
from storesync.core.logging import setup_logging
from storesync.core.middleware import CorrelationIdMiddleware
from storesync.services.ingestion.gateway import PersistenceGateway
from storesync.services.shopify_client import ShopifyClient
from storesync.services.sync.orchestrator import SyncOrchestrator
from storesync.services.sync.registry import build_registry
from storesync.services.sync.scheduler import SyncScheduler

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    gateway = PersistenceGateway(async_session_factory)
    client = ShopifyClient(httpx.AsyncClient(timeout=settings.SHOPIFY_PAGE_TIMEOUT))
    orchestrator = SyncOrchestrator(gateway, client, build_registry())
    scheduler = SyncScheduler(orchestrator, gateway, client)

    app.state.gateway = gateway
    app.state.shopify_client = client
    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler

    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    logger.info("app.startup", env=settings.APP_ENV, registry=settings.SYNC_REGISTRY_BACKEND)

    yield

    scheduler.shutdown()
    await orchestrator.shutdown()
    await client.aclose()
    await engine.dispose()
    logger.info("app.shutdown")


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware (last added = outermost = runs first)
    # CorrelationId must be inner so CORS handles OPTIONS preflight first
    application.add_middleware(CorrelationIdMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(api_router)

    return application


app = create_app()
