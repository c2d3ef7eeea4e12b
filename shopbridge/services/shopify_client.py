"""
Storefront Admin API Client

Thin async client over the Shopify Admin REST API, used by reconciliation
sync to list recent orders and probe connectivity.
"""

import asyncio
import datetime as dt
import httpx
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shopbridge.config import get_settings
from shopbridge.errors import ConnectivityError, UpstreamAPIError
from shopbridge.models.orders import ShopifyOrder
from shopbridge.utils.observability import logger

# Only the fields notifications are built from
ORDER_FIELDS = ",".join([
    "id",
    "order_number",
    "name",
    "email",
    "total_price",
    "currency",
    "financial_status",
    "created_at",
    "line_items",
])


class ShopifyAdminClient:
    """
    Shopify Admin REST client.

    Rate-limited responses (429) are retried after the Retry-After delay;
    any other failure raises UpstreamAPIError.

    Usage:
        client = ShopifyAdminClient()
        shop = await client.get_shop()
        orders = await client.list_orders_since(since)
    """

    def __init__(
        self,
        shop_url: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        page_limit: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
        retries: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            shop_url: Store domain, with or without scheme (defaults to settings)
            access_token: Admin API access token (defaults to settings)
            api_version: API version (defaults to settings)
            page_limit: Orders per page, max 250 (defaults to settings)
            client: Preconfigured httpx client (tests inject a MockTransport)
            retries: Attempts per request when rate limited
            sleep: Awaitable sleep, injectable for tests
        """
        settings = get_settings()
        domain = (shop_url or settings.shopify_shop_url).replace("https://", "").replace("http://", "").rstrip("/")
        self.shop_domain = domain
        self.api_version = api_version or settings.shopify_api_version
        self.page_limit = min(page_limit or settings.sync_page_limit, 250)
        self._access_token = access_token or settings.shopify_access_token
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = client is None
        self._retries = retries
        self._sleep = sleep
        self.base_url = f"https://{domain}/admin/api/{self.api_version}"

    @property
    def is_configured(self) -> bool:
        return bool(self.shop_domain and self._access_token)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path_or_url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = path_or_url if path_or_url.startswith("http") else f"{self.base_url}/{path_or_url}"
        headers = {"X-Shopify-Access-Token": self._access_token or ""}

        for attempt in range(self._retries):
            try:
                response = await self._client.get(url, params=params, headers=headers)
            except httpx.RequestError as e:
                raise UpstreamAPIError(f"Storefront API request failed: {e}") from e

            if response.status_code == 429:
                retry_after = float(response.headers.get("Retry-After", 2))
                logger.warning(
                    f"Storefront API rate limited, waiting {retry_after}s (attempt {attempt + 1}/{self._retries})"
                )
                await self._sleep(retry_after)
                continue

            if response.is_error:
                raise UpstreamAPIError(
                    f"Storefront API returned {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                )
            return response

        raise UpstreamAPIError("Storefront API still rate limited after retries", status_code=429)

    async def get_shop(self) -> Dict[str, Any]:
        """
        Connectivity probe.

        Returns:
            Shop resource

        Raises:
            ConnectivityError: API unreachable or credentials rejected
        """
        if not self.is_configured:
            raise ConnectivityError("Storefront API credentials are not configured")

        try:
            response = await self._get("shop.json")
        except UpstreamAPIError as e:
            raise ConnectivityError(str(e), status_code=e.status_code) from e

        shop = response.json().get("shop", {})
        logger.info(f"✅ Storefront API connection successful: {shop.get('name', 'Unknown Shop')}")
        return shop

    async def list_orders_since(self, since: dt.datetime) -> List[ShopifyOrder]:
        """
        All orders created at or after `since`, across every page.

        Follows the `Link: rel="next"` cursor until it is exhausted.
        """
        params: Optional[Dict[str, Any]] = {
            "status": "any",
            "created_at_min": since.isoformat(),
            "limit": self.page_limit,
            "fields": ORDER_FIELDS,
        }
        url = "orders.json"
        orders: List[ShopifyOrder] = []

        while url:
            response = await self._get(url, params=params)
            orders.extend(self._parse_orders(response))

            next_link = response.links.get("next")
            url = next_link["url"] if next_link else None
            # page_info URLs carry their own query string
            params = None

        logger.info(f"Fetched {len(orders)} orders created since {since.isoformat()}")
        return orders

    async def list_orders_after_id(self, since_id: str, max_pages: int = 20) -> List[ShopifyOrder]:
        """
        Orders with an id greater than `since_id`, oldest first.

        Pages by advancing since_id until a short page comes back.
        """
        orders: List[ShopifyOrder] = []
        cursor = since_id

        for _ in range(max_pages):
            response = await self._get("orders.json", params={
                "status": "any",
                "since_id": cursor,
                "limit": self.page_limit,
                "fields": ORDER_FIELDS,
            })
            page = self._parse_orders(response)
            orders.extend(page)

            if len(page) < self.page_limit:
                break
            cursor = page[-1].id

        logger.info(f"Fetched {len(orders)} orders after id {since_id}")
        return orders

    @staticmethod
    def _parse_orders(response: httpx.Response) -> List[ShopifyOrder]:
        return [ShopifyOrder.model_validate(raw) for raw in response.json().get("orders", [])]
