"""Shopify Admin REST client used by the sync engine.

One call fetches one page. Pagination is driven by the caller through the
``since_id`` cursor; an empty page means there is nothing left to read.
"""

from __future__ import annotations

from datetime import datetime

import httpx
import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from storesync.core.config import settings
from storesync.core.exceptions import InvalidCredential, SourceUnavailable
from storesync.schemas.shopify import ShopDescriptor
from storesync.services.ingestion.records import ResourceKind

logger = structlog.get_logger()

MAX_PAGE_SIZE = 250


def normalize_shop_domain(domain: str) -> str:
    """Reduce ``https://my-shop.myshopify.com/`` style input to ``my-shop``."""
    shop = domain.strip().lower()
    for prefix in ("https://", "http://"):
        if shop.startswith(prefix):
            shop = shop[len(prefix):]
    shop = shop.split("/", 1)[0]
    if shop.endswith(".myshopify.com"):
        shop = shop[: -len(".myshopify.com")]
    return shop


def build_url(domain: str, endpoint: str, api_version: str | None = None) -> str:
    version = api_version or settings.SHOPIFY_API_VERSION
    if not endpoint.startswith("/"):
        endpoint = f"/{endpoint}"
    return f"https://{normalize_shop_domain(domain)}.myshopify.com/admin/api/{version}{endpoint}"


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, SourceUnavailable) and exc.retryable


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "shopify.request.retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
        status_code=getattr(exc, "status_code", None),
    )


class ShopifyClient:
    """Stateless wrapper around the Admin REST API.

    An ``httpx.AsyncClient`` may be injected (connection pooling in the app,
    ``MockTransport`` in tests); otherwise a short-lived client is opened per call.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None, api_version: str | None = None):
        self._http = http_client
        self.api_version = api_version or settings.SHOPIFY_API_VERSION

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()

    async def _send(self, url: str, headers: dict, params: dict | None, timeout: float) -> httpx.Response:
        if self._http is not None:
            return await self._http.get(url, headers=headers, params=params, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.get(url, headers=headers, params=params)

    async def _get(
        self,
        domain: str,
        access_token: str | None,
        endpoint: str,
        params: dict | None = None,
        timeout: float | None = None,
    ) -> dict:
        """Issue one GET and map every failure onto the sync error taxonomy."""
        if not access_token:
            raise InvalidCredential("No Shopify access token supplied")

        url = build_url(domain, endpoint, self.api_version)
        headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
        }
        try:
            resp = await self._send(url, headers, params, timeout or settings.SHOPIFY_PAGE_TIMEOUT)
        except httpx.TimeoutException as exc:
            raise SourceUnavailable(f"Timed out calling {endpoint}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"Transport error calling {endpoint}: {exc}") from exc

        status = resp.status_code
        if status in (401, 403):
            raise InvalidCredential(f"Shopify rejected the access token ({status})")
        if status == 429 or status >= 500:
            raise SourceUnavailable(f"Shopify returned {status} for {endpoint}", status_code=status)
        if status >= 400:
            raise SourceUnavailable(
                f"Shopify returned {status} for {endpoint}: {resp.text[:200]}",
                status_code=status,
                retryable=False,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise SourceUnavailable(f"Malformed JSON from {endpoint}", status_code=status) from exc
        if not isinstance(data, dict):
            raise SourceUnavailable(f"Unexpected response shape from {endpoint}", status_code=status)
        return data

    async def _get_with_retry(self, domain, access_token, endpoint, params=None, timeout=None) -> dict:
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, settings.SHOPIFY_FETCH_MAX_ATTEMPTS)),
            wait=wait_exponential(multiplier=settings.SHOPIFY_RETRY_BACKOFF_SECONDS, max=30),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
        ):
            with attempt:
                return await self._get(domain, access_token, endpoint, params=params, timeout=timeout)

    async def fetch_page(
        self,
        domain: str,
        access_token: str | None,
        kind: ResourceKind | str,
        *,
        limit: int = MAX_PAGE_SIZE,
        since_id: int | str | None = None,
        created_at_min: datetime | None = None,
        status: str | None = None,
        published_status: str | None = None,
    ) -> list[dict]:
        """Fetch one page of ``kind``. Returns ``[]`` when no further pages exist."""
        kind = ResourceKind(kind)
        params: dict = {"limit": max(1, min(int(limit), MAX_PAGE_SIZE))}
        if since_id is not None:
            params["since_id"] = since_id
        if created_at_min is not None:
            params["created_at_min"] = created_at_min.isoformat()
        if status:
            params["status"] = status
        if published_status:
            params["published_status"] = published_status

        data = await self._get_with_retry(domain, access_token, f"/{kind.value}.json", params=params)
        records = data.get(kind.value, [])
        if not isinstance(records, list):
            raise SourceUnavailable(f"Expected a list under '{kind.value}'", retryable=False)
        logger.debug(
            "shopify.fetch_page.done",
            domain=domain,
            kind=kind.value,
            since_id=since_id,
            count=len(records),
        )
        return records

    async def count(self, domain: str, access_token: str | None, kind: ResourceKind | str) -> int:
        kind = ResourceKind(kind)
        data = await self._get_with_retry(domain, access_token, f"/{kind.value}/count.json")
        return int(data.get("count", 0))

    async def verify_connection(self, domain: str, access_token: str | None) -> ShopDescriptor:
        """Check the credential against GET /shop.json with a hard timeout."""
        data = await self._get(
            domain, access_token, "/shop.json", timeout=settings.SHOPIFY_VERIFY_TIMEOUT
        )
        try:
            shop = ShopDescriptor.model_validate(data.get("shop") or {})
        except ValidationError as exc:
            raise SourceUnavailable(f"Unexpected shop payload: {exc.errors()[0].get('msg')}") from exc
        logger.info("shopify.verify_connection.ok", domain=domain, shop_id=shop.id)
        return shop
