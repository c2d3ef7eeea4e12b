"""
Offline Reconciliation Sync

Recovers orders whose webhooks were missed while the service was down:
probe the storefront API, list recent orders, diff them against the
processed-order markers and, once an operator confirms, push the
candidates through the normal ingestion path.
"""

import asyncio
import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shopbridge.message_queue.base import DeliveryStore
from shopbridge.models.base import utcnow
from shopbridge.models.orders import ShopifyOrder, SyncSource
from shopbridge.services.ingestion import IngestionOutcome, WebhookIngestionService
from shopbridge.services.shopify_client import ShopifyAdminClient
from shopbridge.utils.observability import log_business_event, logger


@dataclass
class SyncPreview:
    """Result of steps 1-4: what a sync would process."""
    since: dt.datetime
    found: int
    candidates: List[ShopifyOrder] = field(default_factory=list)

    @property
    def to_process(self) -> int:
        return len(self.candidates)

    def summary(self) -> Dict[str, Any]:
        return {
            "since": self.since.isoformat(),
            "found": self.found,
            "toProcess": self.to_process,
            "orders": [order.display_number for order in self.candidates],
        }


@dataclass
class SyncReport:
    """Outcome of applying a preview."""
    found: int
    to_process: int
    processed: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "found": self.found,
            "toProcess": self.to_process,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


class OfflineOrderSync:
    """
    Reconciliation between the storefront's order history and local markers.

    Usage:
        sync = OfflineOrderSync(store, shopify, ingestion)
        preview = await sync.find_missed_orders(window_hours=24)
        report = await sync.apply(preview)
    """

    def __init__(
        self,
        store: DeliveryStore,
        shopify: ShopifyAdminClient,
        ingestion: WebhookIngestionService,
        window_hours: int = 24,
        inter_order_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize reconciliation sync.

        Args:
            store: Persistence interface (marker lookups)
            shopify: Storefront Admin API client
            ingestion: Order path shared with webhooks
            window_hours: Default look-back window
            inter_order_delay: Seconds between processed orders
            sleep: Awaitable sleep, injectable for tests
        """
        self.store = store
        self.shopify = shopify
        self.ingestion = ingestion
        self.window_hours = window_hours
        self.inter_order_delay = inter_order_delay
        self._sleep = sleep

    async def _diff(self, orders: List[ShopifyOrder]) -> List[ShopifyOrder]:
        candidates = []
        for order in orders:
            if not await self.store.is_order_processed(order.external_id):
                candidates.append(order)
        return candidates

    async def find_missed_orders(
        self,
        window_hours: Optional[int] = None,
        now: Optional[dt.datetime] = None,
    ) -> SyncPreview:
        """
        Orders created inside the window that have no marker.

        Raises:
            ConnectivityError: storefront API unreachable
            UpstreamAPIError: order listing failed
        """
        hours = window_hours or self.window_hours
        since = (now or utcnow()) - dt.timedelta(hours=hours)

        await self.shopify.get_shop()
        orders = await self.shopify.list_orders_since(since)
        candidates = await self._diff(orders)

        logger.info(
            f"🔄 Reconciliation preview: {len(orders)} orders in the last {hours}h, {len(candidates)} unprocessed",
            extra={"found": len(orders), "to_process": len(candidates), "window_hours": hours},
        )
        return SyncPreview(since=since, found=len(orders), candidates=candidates)

    async def find_orders_after(self, since_id: str) -> SyncPreview:
        """Same as find_missed_orders, but pages forward from a known order id."""
        await self.shopify.get_shop()
        orders = await self.shopify.list_orders_after_id(since_id)
        candidates = await self._diff(orders)
        since = min((o.created_at for o in orders if o.created_at), default=utcnow())
        return SyncPreview(since=since, found=len(orders), candidates=candidates)

    async def apply(self, preview: SyncPreview) -> SyncReport:
        """
        Process the previewed candidates, one at a time.

        A failing order is counted and logged; the run continues. Orders
        that are unpaid, disabled or recorded meanwhile count as skipped.
        """
        report = SyncReport(found=preview.found, to_process=preview.to_process)

        for index, order in enumerate(preview.candidates):
            if index:
                await self._sleep(self.inter_order_delay)

            try:
                result = await self.ingestion.process_order(
                    order,
                    source=SyncSource.RECONCILIATION_SYNC,
                    require_paid=True,
                )
            except Exception as e:
                report.failed += 1
                logger.error(
                    f"❌ Reconciliation failed for order {order.display_number}: {e}",
                    extra={"order_id": order.external_id, "error": str(e)},
                )
                continue

            if result.outcome == IngestionOutcome.RECORDED:
                report.processed += 1
            else:
                report.skipped += 1

        if preview.to_process:
            log_business_event("sync_applied", preview.since.isoformat(), **report.as_dict())
        return report

    async def run(self, window_hours: Optional[int] = None) -> SyncReport:
        """Preview and apply in one step."""
        return await self.apply(await self.find_missed_orders(window_hours))

    async def sync_stats(self, window_hours: Optional[int] = None, now: Optional[dt.datetime] = None) -> Dict[str, Any]:
        hours = window_hours or self.window_hours
        since = (now or utcnow()) - dt.timedelta(hours=hours)
        last = await self.store.last_processed_order()
        return {
            "windowHours": hours,
            "processedInWindow": await self.store.count_processed_since(since),
            "lastProcessedOrder": last.model_dump(mode="json", exclude={"id"}) if last else None,
        }
