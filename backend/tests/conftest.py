"""
Test fixtures for the backend test suite.

Database tests run against a throwaway SQLite file (aiosqlite) per test; the
gateway picks the SQLite upsert flavour automatically. Shopify is replaced by
``FakeShopify`` (orchestrator tests) or ``httpx.MockTransport`` (client tests).
"""

import asyncio
import uuid
from datetime import datetime

import pytest_asyncio
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storesync.core.config import settings

settings.ENCRYPTION_KEY = Fernet.generate_key().decode()
settings.SHOPIFY_RETRY_BACKOFF_SECONDS = 0
settings.SCHEDULER_ENABLED = False

from storesync.core.database import get_db  # noqa: E402
from storesync.core.encryption import encrypt_credentials  # noqa: E402
from storesync.core.exceptions import InvalidCredential  # noqa: E402
from storesync.main import create_app  # noqa: E402
from storesync.models import Base, Store, Tenant  # noqa: E402
from storesync.schemas.shopify import ShopDescriptor  # noqa: E402
from storesync.services.ingestion.gateway import PersistenceGateway  # noqa: E402
from storesync.services.ingestion.records import ResourceKind  # noqa: E402
from storesync.services.sync.orchestrator import SyncOrchestrator  # noqa: E402
from storesync.services.sync.registry import InMemoryJobRegistry  # noqa: E402
from storesync.services.sync.scheduler import SyncScheduler  # noqa: E402

# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database file with every table created."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storesync.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def gateway(session_factory) -> PersistenceGateway:
    return PersistenceGateway(session_factory)


@pytest_asyncio.fixture
async def fake_shopify() -> "FakeShopify":
    return FakeShopify()


@pytest_asyncio.fixture
async def registry() -> InMemoryJobRegistry:
    return InMemoryJobRegistry()


@pytest_asyncio.fixture
async def orchestrator(gateway, fake_shopify, registry):
    orch = SyncOrchestrator(gateway, fake_shopify, registry)
    yield orch
    await orch.shutdown()


# ---------------------------------------------------------------------------
# Tenant & Store factories
# ---------------------------------------------------------------------------


async def create_test_tenant(session_factory, name: str = "Test Corp") -> Tenant:
    async with session_factory() as session:
        tenant = Tenant(name=name, slug=f"test-{uuid.uuid4().hex[:8]}", is_active=True)
        session.add(tenant)
        await session.commit()
        return tenant


async def create_test_store(
    session_factory,
    tenant: Tenant,
    *,
    domain: str | None = None,
    connection_state: str = "connected",
    sync_frequency: str = "daily",
    last_sync_at: datetime | None = None,
    access_token: str | None = "shpat_test_token",
) -> Store:
    async with session_factory() as session:
        store = Store(
            tenant_id=tenant.id,
            domain=domain or f"shop-{uuid.uuid4().hex[:8]}.myshopify.com",
            store_name="Test Shop",
            encrypted_credentials=(
                encrypt_credentials({"access_token": access_token}) if access_token else None
            ),
            connection_state=connection_state,
            sync_frequency=sync_frequency,
            last_sync_at=last_sync_at,
        )
        session.add(store)
        await session.commit()
        return store


@pytest_asyncio.fixture
async def tenant(session_factory) -> Tenant:
    return await create_test_tenant(session_factory, name="Tenant A")


@pytest_asyncio.fixture
async def other_tenant(session_factory) -> Tenant:
    return await create_test_tenant(session_factory, name="Tenant B")


@pytest_asyncio.fixture
async def store(session_factory, tenant) -> Store:
    return await create_test_store(session_factory, tenant)


# ---------------------------------------------------------------------------
# Shopify payload builders
# ---------------------------------------------------------------------------


def make_customer(customer_id: int, **overrides) -> dict:
    data = {
        "id": customer_id,
        "email": f"customer{customer_id}@example.com",
        "first_name": "Ada",
        "last_name": f"Customer{customer_id}",
        "total_spent": "120.50",
        "orders_count": 2,
        "state": "enabled",
        "created_at": "2024-03-01T10:00:00-05:00",
        "updated_at": "2024-03-02T10:00:00-05:00",
        "addresses": [{"id": 1, "city": "Ottawa"}],
        "default_address": {"id": 1, "city": "Ottawa"},
    }
    data.update(overrides)
    return data


def make_product(product_id: int, **overrides) -> dict:
    data = {
        "id": product_id,
        "title": f"Product {product_id}",
        "vendor": "Acme",
        "status": "active",
        "created_at": "2024-01-10T09:00:00Z",
        "updated_at": "2024-01-11T09:00:00Z",
        "variants": [
            {"id": product_id * 10, "price": "19.99", "compare_at_price": "24.99", "inventory_quantity": 7},
            {"id": product_id * 10 + 1, "price": "29.99", "inventory_quantity": 3},
        ],
        "options": [{"name": "Size", "values": ["S", "M"]}],
        "images": [{"id": 5, "src": "https://cdn.example.com/p.png"}],
    }
    data.update(overrides)
    return data


def make_order(order_id: int, line_item_ids: tuple[int, ...] = (1, 2), **overrides) -> dict:
    data = {
        "id": order_id,
        "name": f"#{order_id}",
        "order_number": order_id,
        "email": "buyer@example.com",
        "currency": "USD",
        "financial_status": "paid",
        "total_price": "59.98",
        "subtotal_price": "55.00",
        "total_tax": "4.98",
        "created_at": "2024-03-05T12:00:00Z",
        "updated_at": "2024-03-05T12:30:00Z",
        "customer": {"id": 1001},
        "tax_lines": [{"title": "GST", "price": "4.98"}],
        "line_items": [
            {"id": order_id * 100 + li, "product_id": 501, "title": "Widget", "quantity": 1, "price": "27.49"}
            for li in line_item_ids
        ],
    }
    data.update(overrides)
    return data


# ---------------------------------------------------------------------------
# Fake Shopify data source
# ---------------------------------------------------------------------------


class FakeShopify:
    """In-memory stand-in for ShopifyClient with the same call signatures.

    Records every fetch, serves pages by ``since_id`` like the real API, and can
    raise per kind or hold fetches behind an ``asyncio.Event``.
    """

    def __init__(self):
        self.data: dict[ResourceKind, list[dict]] = {kind: [] for kind in ResourceKind}
        self.calls: list[dict] = []
        self.failures: dict[ResourceKind, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.fetch_started = asyncio.Event()
        self.on_fetch = None
        self.invalid_tokens: set[str] = set()

    def add(self, kind: ResourceKind, records: list[dict]) -> None:
        self.data[kind].extend(records)
        self.data[kind].sort(key=lambda r: r["id"])

    def calls_for(self, kind: ResourceKind) -> list[dict]:
        return [c for c in self.calls if c["kind"] == kind]

    async def fetch_page(
        self,
        domain,
        access_token,
        kind,
        *,
        limit=250,
        since_id=None,
        created_at_min=None,
        status=None,
        published_status=None,
    ):
        kind = ResourceKind(kind)
        call = {
            "domain": domain,
            "access_token": access_token,
            "kind": kind,
            "limit": limit,
            "since_id": since_id,
            "created_at_min": created_at_min,
            "status": status,
            "published_status": published_status,
        }
        self.calls.append(call)
        if self.on_fetch is not None:
            self.on_fetch(call)
        self.fetch_started.set()
        if self.gate is not None:
            await self.gate.wait()
        if kind in self.failures:
            raise self.failures[kind]
        records = [r for r in self.data[kind] if since_id is None or r["id"] > since_id]
        return records[:limit]

    async def verify_connection(self, domain, access_token):
        if access_token in self.invalid_tokens:
            raise InvalidCredential("Shopify rejected the access token (401)")
        return ShopDescriptor(id=42, name="Fake Shop", currency="USD", iana_timezone="America/Toronto")

    async def count(self, domain, access_token, kind):
        return len(self.data[ResourceKind(kind)])


# ---------------------------------------------------------------------------
# API app & client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def app(session_factory, gateway, fake_shopify, orchestrator):
    """FastAPI app wired to the test database and FakeShopify; lifespan is not run."""
    application = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    application.state.gateway = gateway
    application.state.shopify_client = fake_shopify
    application.state.orchestrator = orchestrator
    application.state.scheduler = SyncScheduler(orchestrator, gateway, fake_shopify)
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def tenant_headers(tenant) -> dict:
    return {"X-Tenant-ID": str(tenant.id)}
