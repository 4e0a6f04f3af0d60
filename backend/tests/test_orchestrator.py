"""Tests for the sync orchestrator.

Most tests drive the orchestrator against ``FakeShopify``; the paging test at the
bottom wires in the real ShopifyClient over ``httpx.MockTransport``.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import func, select

from storesync.core.exceptions import (
    ConflictError,
    InvalidCredential,
    NotFoundError,
    PreconditionError,
    SourceUnavailable,
)
from storesync.models import Customer, Order, OrderLineItem, Product
from storesync.services.ingestion.records import ResourceKind
from storesync.services.shopify_client import ShopifyClient
from storesync.services.sync.job import SyncKind, SyncStatus
from storesync.services.sync.orchestrator import SyncOrchestrator
from storesync.services.sync.registry import InMemoryJobRegistry
from tests.conftest import create_test_store, make_customer, make_order, make_product


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


def _seed(fake, customers=3, products=2, orders=2):
    fake.add(ResourceKind.CUSTOMERS, [make_customer(1000 + i) for i in range(1, customers + 1)])
    fake.add(ResourceKind.PRODUCTS, [make_product(500 + i) for i in range(1, products + 1)])
    fake.add(ResourceKind.ORDERS, [make_order(9000 + i) for i in range(1, orders + 1)])


async def _run_to_end(orchestrator, tenant, store, kind=SyncKind.FULL):
    job = await orchestrator.trigger_sync(tenant.id, store.id, kind)
    await orchestrator.wait_idle()
    return job


# ---------------------------------------------------------------------------
# Triggering
# ---------------------------------------------------------------------------


class TestTriggerSync:
    async def test_full_sync_mirrors_every_kind(self, orchestrator, fake_shopify, session_factory, tenant, store):
        _seed(fake_shopify)

        job = await _run_to_end(orchestrator, tenant, store)

        assert job.status == SyncStatus.COMPLETED
        assert job.progress == 100
        assert job.errors == []
        assert job.total_items == 7
        assert job.processed_items == 7
        assert await _count(session_factory, Customer) == 3
        assert await _count(session_factory, Product) == 2
        assert await _count(session_factory, Order) == 2
        assert await _count(session_factory, OrderLineItem) == 4

    async def test_kinds_run_in_order(self, orchestrator, fake_shopify, tenant, store):
        _seed(fake_shopify)
        await _run_to_end(orchestrator, tenant, store)

        kinds = [c["kind"] for c in fake_shopify.calls]
        assert kinds == [ResourceKind.CUSTOMERS, ResourceKind.PRODUCTS, ResourceKind.ORDERS]

    async def test_returns_before_sync_finishes(self, orchestrator, fake_shopify, tenant, store):
        fake_shopify.gate = asyncio.Event()

        job = await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)

        assert not job.is_terminal
        fake_shopify.gate.set()
        await orchestrator.wait_idle()
        assert job.status == SyncStatus.COMPLETED

    async def test_success_updates_last_sync_at(self, orchestrator, gateway, tenant, store):
        before = datetime.now(timezone.utc) - timedelta(seconds=1)
        await _run_to_end(orchestrator, tenant, store)

        refreshed = await gateway.get_store_by_id(store.id)
        last_sync = refreshed.last_sync_at.replace(tzinfo=timezone.utc)
        assert last_sync >= before
        assert refreshed.connection_state == "connected"

    async def test_unknown_store(self, orchestrator, tenant):
        with pytest.raises(NotFoundError):
            await orchestrator.trigger_sync(tenant.id, uuid.uuid4(), SyncKind.FULL)

    async def test_other_tenants_store_is_not_found(self, orchestrator, other_tenant, store):
        with pytest.raises(NotFoundError):
            await orchestrator.trigger_sync(other_tenant.id, store.id, SyncKind.FULL)

    async def test_disconnected_store(self, orchestrator, session_factory, tenant):
        store = await create_test_store(
            session_factory, tenant, connection_state="disconnected", access_token=None
        )
        with pytest.raises(PreconditionError):
            await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)

    async def test_start_full_sync_by_store_id(self, orchestrator, tenant, store):
        job = await orchestrator.start_full_sync(store.id)
        await orchestrator.wait_idle()
        assert job.kind == SyncKind.FULL
        assert job.tenant_id == tenant.id
        assert job.status == SyncStatus.COMPLETED

    async def test_start_incremental_sync_unknown_store(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.start_incremental_sync(uuid.uuid4())


class TestSingleFlight:
    async def test_concurrent_triggers_start_one_job(self, orchestrator, fake_shopify, tenant, store):
        fake_shopify.gate = asyncio.Event()

        results = await asyncio.gather(
            orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL),
            orchestrator.trigger_sync(tenant.id, store.id, SyncKind.INCREMENTAL),
            return_exceptions=True,
        )

        jobs = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(jobs) == 1
        assert len(conflicts) == 1

        fake_shopify.gate.set()
        await orchestrator.wait_idle()

    async def test_new_sync_allowed_after_completion(self, orchestrator, tenant, store):
        await _run_to_end(orchestrator, tenant, store)
        second = await _run_to_end(orchestrator, tenant, store)
        assert second.status == SyncStatus.COMPLETED

    async def test_different_stores_run_concurrently(self, orchestrator, fake_shopify, session_factory, tenant, store):
        other = await create_test_store(session_factory, tenant)
        fake_shopify.gate = asyncio.Event()

        a = await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)
        b = await orchestrator.trigger_sync(tenant.id, other.id, SyncKind.FULL)

        fake_shopify.gate.set()
        await orchestrator.wait_idle()
        assert a.status == b.status == SyncStatus.COMPLETED


# ---------------------------------------------------------------------------
# Data behaviour
# ---------------------------------------------------------------------------


class TestIdempotency:
    async def test_repeated_full_sync_does_not_duplicate(
        self, orchestrator, fake_shopify, session_factory, tenant, store
    ):
        _seed(fake_shopify)
        await _run_to_end(orchestrator, tenant, store)

        fake_shopify.data[ResourceKind.CUSTOMERS][0]["email"] = "changed@example.com"
        await _run_to_end(orchestrator, tenant, store)

        assert await _count(session_factory, Customer) == 3
        assert await _count(session_factory, Order) == 2
        assert await _count(session_factory, OrderLineItem) == 4
        async with session_factory() as session:
            row = (
                await session.execute(select(Customer).where(Customer.shopify_customer_id == 1001))
            ).scalar_one()
        assert row.email == "changed@example.com"


class TestIncrementalSync:
    async def test_created_at_min_includes_overlap(self, orchestrator, fake_shopify, session_factory, tenant):
        last_sync = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
        store = await create_test_store(session_factory, tenant, last_sync_at=last_sync)

        await _run_to_end(orchestrator, tenant, store, SyncKind.INCREMENTAL)

        expected = last_sync - timedelta(hours=1)
        assert fake_shopify.calls_for(ResourceKind.CUSTOMERS)[0]["created_at_min"] == expected
        assert fake_shopify.calls_for(ResourceKind.ORDERS)[0]["created_at_min"] == expected
        # Products are not date-bounded.
        assert fake_shopify.calls_for(ResourceKind.PRODUCTS)[0]["created_at_min"] is None

    async def test_never_synced_store_fetches_everything(self, orchestrator, fake_shopify, tenant, store):
        await _run_to_end(orchestrator, tenant, store, SyncKind.INCREMENTAL)
        assert all(c["created_at_min"] is None for c in fake_shopify.calls)

    async def test_full_sync_ignores_last_sync_at(self, orchestrator, fake_shopify, session_factory, tenant):
        store = await create_test_store(
            session_factory, tenant, last_sync_at=datetime(2024, 5, 1, tzinfo=timezone.utc)
        )
        await _run_to_end(orchestrator, tenant, store, SyncKind.FULL)
        assert all(c["created_at_min"] is None for c in fake_shopify.calls)

    async def test_orders_request_any_status(self, orchestrator, fake_shopify, tenant, store):
        await _run_to_end(orchestrator, tenant, store)
        assert fake_shopify.calls_for(ResourceKind.ORDERS)[0]["status"] == "any"
        assert fake_shopify.calls_for(ResourceKind.PRODUCTS)[0]["published_status"] == "published"


class TestProgress:
    async def test_progress_is_monotonic_and_finishes_at_100(self, orchestrator, fake_shopify, tenant, store):
        fake_shopify.add(ResourceKind.CUSTOMERS, [make_customer(i) for i in range(1, 301)])
        samples = []
        holder = {}
        fake_shopify.on_fetch = lambda call: samples.append(holder["job"].progress) if "job" in holder else None

        job = await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)
        holder["job"] = job
        await orchestrator.wait_idle()

        assert len(samples) >= 3
        assert samples == sorted(samples)
        assert all(p < 100 for p in samples)
        assert job.progress == 100
        assert job.status == SyncStatus.COMPLETED
        assert job.total_items == 300

    async def test_paging_uses_last_id_as_cursor(self, orchestrator, fake_shopify, tenant, store):
        fake_shopify.add(ResourceKind.CUSTOMERS, [make_customer(i) for i in range(1, 301)])
        await _run_to_end(orchestrator, tenant, store)

        customer_calls = fake_shopify.calls_for(ResourceKind.CUSTOMERS)
        assert [c["since_id"] for c in customer_calls] == [None, 250]


class TestPartialFailure:
    async def test_bad_record_is_reported_and_rest_persisted(
        self, orchestrator, fake_shopify, session_factory, tenant, store
    ):
        customers = [make_customer(1000 + i) for i in range(1, 11)]
        customers[4]["total_spent"] = "not-a-number"
        fake_shopify.add(ResourceKind.CUSTOMERS, customers)

        job = await _run_to_end(orchestrator, tenant, store)

        assert job.status == SyncStatus.COMPLETED
        assert job.total_items == 10
        assert job.processed_items == 9
        assert len(job.errors) == 1
        assert "Customer 1005" in job.errors[0]
        assert await _count(session_factory, Customer) == 9

    async def test_malformed_nested_reference_does_not_fail_the_job(
        self, orchestrator, fake_shopify, gateway, session_factory, tenant, store
    ):
        orders = [make_order(7000 + i) for i in range(1, 11)]
        orders[4]["customer"] = {"id": "guest-abc"}
        fake_shopify.add(ResourceKind.ORDERS, orders)

        job = await _run_to_end(orchestrator, tenant, store)

        assert job.status == SyncStatus.COMPLETED
        assert job.total_items == 10
        assert job.processed_items == 9
        assert len(job.errors) == 1
        assert job.errors[0].startswith("Order 7005")
        assert await _count(session_factory, Order) == 9
        assert (await gateway.get_store_by_id(store.id)).connection_state == "connected"


# ---------------------------------------------------------------------------
# Cancellation and failures
# ---------------------------------------------------------------------------


class TestCancel:
    async def test_cancel_running_sync_then_retrigger(self, orchestrator, fake_shopify, tenant, store):
        _seed(fake_shopify)
        fake_shopify.gate = asyncio.Event()
        job = await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)
        await fake_shopify.fetch_started.wait()

        assert await orchestrator.cancel_sync(job.id, tenant.id) is True
        assert job.status == SyncStatus.CANCELLED

        second = await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)
        fake_shopify.gate.set()
        await orchestrator.wait_idle()

        assert job.status == SyncStatus.CANCELLED
        assert job.processed_items == 0
        assert second.status == SyncStatus.COMPLETED

    async def test_cancel_unknown_job(self, orchestrator, tenant):
        assert await orchestrator.cancel_sync("nope", tenant.id) is False

    async def test_cancel_requires_same_tenant(self, orchestrator, fake_shopify, tenant, other_tenant, store):
        fake_shopify.gate = asyncio.Event()
        job = await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)

        assert await orchestrator.cancel_sync(job.id, other_tenant.id) is False

        fake_shopify.gate.set()
        await orchestrator.wait_idle()

    async def test_cancelled_run_is_recorded(self, orchestrator, fake_shopify, gateway, tenant, store):
        fake_shopify.gate = asyncio.Event()
        job = await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)
        await orchestrator.cancel_sync(job.id, tenant.id)
        fake_shopify.gate.set()
        await orchestrator.wait_idle()

        runs, _ = await gateway.list_sync_runs(tenant.id)
        assert [r.status for r in runs] == ["cancelled"]

    async def test_shutdown_cancels_tasks(self, gateway, fake_shopify, tenant, store):
        orchestrator = SyncOrchestrator(gateway, fake_shopify)
        fake_shopify.gate = asyncio.Event()
        job = await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)
        await fake_shopify.fetch_started.wait()

        await orchestrator.shutdown()

        assert job.status == SyncStatus.CANCELLED


class TestFailures:
    async def test_invalid_credential_fails_job_and_flags_store(
        self, orchestrator, fake_shopify, gateway, tenant, store
    ):
        fake_shopify.failures[ResourceKind.CUSTOMERS] = InvalidCredential("Shopify rejected the access token (401)")

        job = await _run_to_end(orchestrator, tenant, store)

        assert job.status == SyncStatus.FAILED
        assert "Invalid credential" in job.errors[-1]
        refreshed = await gateway.get_store_by_id(store.id)
        assert refreshed.connection_state == "error"
        assert "401" in refreshed.error_log
        # Later kinds are never fetched.
        assert fake_shopify.calls_for(ResourceKind.ORDERS) == []

    async def test_unavailable_kind_is_skipped(self, orchestrator, fake_shopify, gateway, session_factory, tenant, store):
        _seed(fake_shopify)
        fake_shopify.failures[ResourceKind.PRODUCTS] = SourceUnavailable("Shopify returned 503 for /products.json", 503)

        job = await _run_to_end(orchestrator, tenant, store)

        assert job.status == SyncStatus.COMPLETED
        assert any(e.startswith("Products sync failed") for e in job.errors)
        assert await _count(session_factory, Customer) == 3
        assert await _count(session_factory, Order) == 2
        # A skipped kind leaves the incremental watermark alone.
        assert (await gateway.get_store_by_id(store.id)).last_sync_at is None

    async def test_every_kind_unavailable_fails_job(self, orchestrator, fake_shopify, gateway, tenant, store):
        for kind in ResourceKind:
            fake_shopify.failures[kind] = SourceUnavailable("down")

        job = await _run_to_end(orchestrator, tenant, store)

        assert job.status == SyncStatus.FAILED
        assert (await gateway.get_store_by_id(store.id)).connection_state == "error"

    async def test_unexpected_error_fails_job(self, orchestrator, fake_shopify, tenant, store):
        fake_shopify.failures[ResourceKind.CUSTOMERS] = RuntimeError("kaboom")

        job = await _run_to_end(orchestrator, tenant, store)

        assert job.status == SyncStatus.FAILED
        assert job.errors[-1] == "Sync failed: kaboom"

    async def test_lock_released_after_failure(self, orchestrator, fake_shopify, tenant, store):
        fake_shopify.failures[ResourceKind.CUSTOMERS] = RuntimeError("kaboom")
        await _run_to_end(orchestrator, tenant, store)

        fake_shopify.failures.clear()
        job = await _run_to_end(orchestrator, tenant, store)
        assert job.status == SyncStatus.COMPLETED

    async def test_every_finished_job_is_recorded_and_announced(
        self, orchestrator, fake_shopify, gateway, tenant, store
    ):
        announced = []

        async def listener(job):
            announced.append(job.status)

        orchestrator.add_listener(listener)
        await _run_to_end(orchestrator, tenant, store)
        fake_shopify.failures[ResourceKind.CUSTOMERS] = InvalidCredential("revoked")
        await gateway.mark_store_synced(store.id, datetime.now(timezone.utc))
        await _run_to_end(orchestrator, tenant, store)

        runs, total = await gateway.list_sync_runs(tenant.id)
        assert total == 2
        assert sorted(r.status for r in runs) == ["completed", "failed"]
        assert announced == [SyncStatus.COMPLETED, SyncStatus.FAILED]

    async def test_failing_listener_does_not_break_finalization(self, orchestrator, gateway, tenant, store):
        async def broken(job):
            raise RuntimeError("listener down")

        orchestrator.add_listener(broken)
        job = await _run_to_end(orchestrator, tenant, store)

        assert job.status == SyncStatus.COMPLETED
        _, total = await gateway.list_sync_runs(tenant.id)
        assert total == 1

    async def test_registry_error_at_start_still_finalizes(self, gateway, fake_shopify, tenant, store):
        class FlakyRegistry(InMemoryJobRegistry):
            def __init__(self):
                super().__init__()
                self.fail_next_update = True

            async def update(self, job):
                if self.fail_next_update:
                    self.fail_next_update = False
                    raise ConnectionError("registry unreachable")

        registry = FlakyRegistry()
        orch = SyncOrchestrator(gateway, fake_shopify, registry)
        try:
            job = await _run_to_end(orch, tenant, store)
        finally:
            await orch.shutdown()

        assert job.status == SyncStatus.FAILED
        assert job.errors[-1] == "Sync failed: registry unreachable"
        assert await registry.get(store.id) is None
        runs, _ = await gateway.list_sync_runs(tenant.id)
        assert [r.status for r in runs] == ["failed"]


# ---------------------------------------------------------------------------
# Status, history, retry
# ---------------------------------------------------------------------------


class TestStatusAndHistory:
    async def test_status_shows_active_job(self, orchestrator, fake_shopify, tenant, store):
        fake_shopify.gate = asyncio.Event()
        job = await orchestrator.trigger_sync(tenant.id, store.id, SyncKind.FULL)

        status = await orchestrator.get_status(tenant.id)

        assert status["total_stores"] == 1
        assert status["connected_stores"] == 1
        assert status["active_syncs"] == 1
        assert status["stores"][0]["active_job"]["id"] == job.id
        assert (await orchestrator.get_job(job.id, tenant.id)) is job

        fake_shopify.gate.set()
        await orchestrator.wait_idle()
        assert (await orchestrator.get_status(tenant.id))["active_syncs"] == 0

    async def test_status_is_tenant_scoped(self, orchestrator, other_tenant, store):
        status = await orchestrator.get_status(other_tenant.id)
        assert status["total_stores"] == 0

    async def test_history_pagination(self, orchestrator, tenant, store):
        for _ in range(3):
            await _run_to_end(orchestrator, tenant, store)

        history = await orchestrator.get_sync_history(tenant.id, store.id, page=2, page_size=2)

        assert history["total"] == 3
        assert history["pages"] == 2
        assert len(history["items"]) == 1

    async def test_statistics_defaults_to_30d(self, orchestrator, fake_shopify, tenant, store):
        _seed(fake_shopify)
        await _run_to_end(orchestrator, tenant, store)

        stats = await orchestrator.get_sync_statistics(tenant.id, store.id, period="bogus")

        assert stats["period"] == "30d"
        assert stats["products_count"] == 2
        assert stats["last_sync_at"] is not None


class TestRetry:
    async def test_retry_failed_run(self, orchestrator, fake_shopify, gateway, tenant, store):
        fake_shopify.failures[ResourceKind.CUSTOMERS] = RuntimeError("kaboom")
        await _run_to_end(orchestrator, tenant, store, SyncKind.INCREMENTAL)
        # The failure flagged the store; reconnect before retrying.
        await gateway.mark_store_synced(store.id, datetime.now(timezone.utc))
        fake_shopify.failures.clear()
        runs, _ = await gateway.list_sync_runs(tenant.id)

        job = await orchestrator.retry_sync(runs[0].id, tenant.id)
        await orchestrator.wait_idle()

        assert job.kind == SyncKind.INCREMENTAL
        assert job.status == SyncStatus.COMPLETED

    async def test_clean_run_cannot_be_retried(self, orchestrator, gateway, tenant, store):
        await _run_to_end(orchestrator, tenant, store)
        runs, _ = await gateway.list_sync_runs(tenant.id)

        with pytest.raises(PreconditionError):
            await orchestrator.retry_sync(runs[0].id, tenant.id)

    async def test_unknown_run(self, orchestrator, tenant):
        with pytest.raises(NotFoundError):
            await orchestrator.retry_sync(uuid.uuid4(), tenant.id)


# ---------------------------------------------------------------------------
# End to end with the real HTTP client
# ---------------------------------------------------------------------------


class TestWithShopifyClient:
    async def test_620_customers_in_three_requests(self, gateway, session_factory, tenant, store):
        catalog = {
            "customers": [make_customer(i) for i in range(1, 621)],
            "products": [],
            "orders": [],
        }
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            key = request.url.path.rsplit("/", 1)[-1].removesuffix(".json")
            seen.append(key)
            limit = int(request.url.params["limit"])
            since_id = int(request.url.params.get("since_id", 0))
            page = [r for r in catalog[key] if r["id"] > since_id][:limit]
            return httpx.Response(200, json={key: page})

        client = ShopifyClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        orchestrator = SyncOrchestrator(gateway, client)

        job = await _run_to_end(orchestrator, tenant, store)
        await client.aclose()

        assert job.status == SyncStatus.COMPLETED
        assert seen.count("customers") == 3
        assert await _count(session_factory, Customer) == 620
