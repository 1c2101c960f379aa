"""
Player enrichment queue.

In-memory priority work list drained by a single worker task:

1. Sort: high priority first, newest first within a priority class
2. Take up to ``batch_size`` items and process them serially
3. On batch failure, re-enqueue the items with retry_count + 1; items that
   reach ``max_retries`` are dropped
4. Wait ``batch_delay`` seconds before the next batch

Ids whose player row was refreshed within ``refresh_interval`` are skipped
before any remote call. Storage calls run on the database executor so a
retrying write never blocks the event loop.

Usage:
    queue = EnrichmentQueue(client, gateway)
    queue.process_new_players(["76561197960287930"])
    await queue.drain()
"""
import asyncio
from concurrent.futures import Executor
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from functools import partial
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from server_scout.core import metrics
from server_scout.core.errors import ExternalAPIError
from server_scout.core.logging import get_logger
from server_scout.services.enrichment.profile_client import ProfileApiClient, to_player_record
from server_scout.utils.timezone import is_older_than, utcnow

logger = get_logger(__name__)


class Priority(Enum):
    HIGH = "high"
    NORMAL = "normal"


@dataclass(frozen=True)
class QueueItem:
    steam_id: str
    priority: Priority = Priority.NORMAL
    enqueued_at: datetime = field(default_factory=utcnow)
    retry_count: int = 0


@dataclass
class QueueStats:
    processed: int = 0
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    retried: int = 0
    dropped: int = 0
    batches: int = 0
    failed_batches: int = 0


class EnrichmentQueue:
    """
    Priority queue driving the profile client.

    Args:
        client: Profile API client
        gateway: Persistence gateway
        batch_size: Items per batch
        batch_delay: Seconds between batches
        max_retries: Batch failures after which an item is dropped
        refresh_interval: Minimum age before a player is fetched again
        app_id: App id whose ownership is recorded on the player
        autostart: Start the worker when items are enqueued
        sleep: Coroutine used for the inter-batch delay
        executor: Executor for storage calls (the loop's default executor
            when omitted)
    """

    def __init__(
        self,
        client: ProfileApiClient,
        gateway,
        batch_size: int = 50,
        batch_delay: float = 2.0,
        max_retries: int = 3,
        refresh_interval: timedelta = timedelta(hours=24),
        app_id: int = 4000,
        autostart: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        executor: Optional[Executor] = None,
    ):
        self.client = client
        self.gateway = gateway
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_retries = max_retries
        self.refresh_interval = refresh_interval
        self.app_id = app_id
        self.autostart = autostart
        self._sleep = sleep
        self.executor = executor

        self._items: List[QueueItem] = []
        self._worker: Optional[asyncio.Task] = None
        self.is_processing = False
        self.stats = QueueStats()

    def __len__(self) -> int:
        return len(self._items)

    # ─────────────────────────────────────────────────────────────────────
    # Producers
    # ─────────────────────────────────────────────────────────────────────

    def enqueue(self, steam_ids: List[str], priority: Priority = Priority.NORMAL) -> int:
        """
        Add ids to the queue; high priority goes to the front.

        Returns:
            Queue size after the insert
        """
        now = utcnow()
        items = [QueueItem(steam_id=str(sid), priority=priority, enqueued_at=now) for sid in steam_ids]
        if not items:
            return len(self._items)

        if priority is Priority.HIGH:
            self._items[:0] = items
        else:
            self._items.extend(items)

        metrics.enrichment_queue_size.set(len(self._items))
        logger.info(f"📥 Queued {len(items)} ids ({priority.value}), queue size {len(self._items)}")

        if self.autostart:
            self.start()
        return len(self._items)

    def process_new_players(self, steam_ids: List[str]) -> int:
        """Queue freshly seen players ahead of the backlog."""
        return self.enqueue(steam_ids, Priority.HIGH)

    async def refresh_stale_players(self, limit: int = 1000) -> int:
        """
        Queue players whose data is older than the refresh interval.

        Returns:
            Number of ids queued
        """
        before = utcnow() - self.refresh_interval
        steam_ids = await self._run_blocking(self.gateway.find_stale_players, before, limit)
        if not steam_ids:
            logger.info("✅ No players need refresh")
            return 0

        logger.info(f"📅 Found {len(steam_ids)} players needing refresh")
        self.enqueue(steam_ids, Priority.NORMAL)
        return len(steam_ids)

    # ─────────────────────────────────────────────────────────────────────
    # Worker
    # ─────────────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the worker task unless one is already running."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def drain(self) -> None:
        """Run until the queue is empty."""
        self.start()
        if self._worker is not None:
            await self._worker

    async def stop(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

    def next_batch(self) -> List[QueueItem]:
        """Sort the work list and take the next batch off the front."""
        self._items.sort(key=lambda item: item.enqueued_at, reverse=True)
        self._items.sort(key=lambda item: item.priority is not Priority.HIGH)
        batch = self._items[:self.batch_size]
        del self._items[:self.batch_size]
        metrics.enrichment_queue_size.set(len(self._items))
        return batch

    async def _run(self) -> None:
        self.is_processing = True
        logger.info("🔄 Starting enrichment queue processing...")
        try:
            while self._items:
                batch = self.next_batch()
                self.stats.batches += 1
                try:
                    await self.process_batch([item.steam_id for item in batch])
                except Exception as e:
                    self.stats.failed_batches += 1
                    logger.error(f"❌ Enrichment batch of {len(batch)} failed: {e}")
                    self._requeue_failed(batch)

                if self._items:
                    await self._sleep(self.batch_delay)

            logger.info("✅ Enrichment queue drained")
        finally:
            self.is_processing = False

    def _requeue_failed(self, batch: List[QueueItem]) -> None:
        retry = [replace(item, retry_count=item.retry_count + 1) for item in batch]
        keep = [item for item in retry if item.retry_count < self.max_retries]

        dropped = len(retry) - len(keep)
        if dropped:
            self.stats.dropped += dropped
            metrics.enrichment_items_total.labels(outcome="dropped").inc(dropped)
            logger.warning(f"Dropping {dropped} ids after {self.max_retries} failed attempts")
        if keep:
            self.stats.retried += len(keep)
            metrics.enrichment_items_total.labels(outcome="retried").inc(len(keep))
            self._items.extend(keep)
            metrics.enrichment_queue_size.set(len(self._items))

    # ─────────────────────────────────────────────────────────────────────
    # Processing
    # ─────────────────────────────────────────────────────────────────────

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    def needs_refresh(self, steam_id: str) -> bool:
        last_updated = self.gateway.player_last_updated(steam_id)
        if last_updated is None:
            return True
        return is_older_than(last_updated, self.refresh_interval)

    async def process_batch(self, steam_ids: List[str]) -> None:
        """
        Fetch and store one batch.

        Raises:
            ExternalAPIError: if the summary lookup fails
            PersistenceError: if the freshness check fails
        """
        due = []
        for steam_id in steam_ids:
            if await self._run_blocking(self.needs_refresh, steam_id):
                due.append(steam_id)
            else:
                self.stats.skipped += 1
                metrics.enrichment_items_total.labels(outcome="skipped").inc()
                logger.debug(f"⏭️ Skipping player {steam_id}, recently updated")

        if not due:
            return

        summaries = await self.client.get_player_summaries(due)
        for summary in summaries:
            self.stats.processed += 1
            try:
                await self.process_player(summary)
                self.stats.saved += 1
                metrics.enrichment_items_total.labels(outcome="saved").inc()
            except Exception as e:
                self.stats.failed += 1
                metrics.enrichment_items_total.labels(outcome="failed").inc()
                logger.error(f"❌ Failed to process player {summary.get('steamid')}: {e}")

        logger.info(f"✅ Enriched {len(summaries)} of {len(due)} players")

    async def process_player(self, summary: Dict[str, Any]) -> None:
        steam_id = str(summary["steamid"])
        owned_games = None
        try:
            owned_games = await self.client.get_owned_games(steam_id)
        except ExternalAPIError as e:
            logger.info(f"⚠️ Could not fetch games for player {steam_id} (private profile?): {e}")

        record = to_player_record(summary, owned_games, self.app_id)
        await self._run_blocking(self.gateway.upsert_player, record)

    def get_queue_stats(self) -> Dict[str, Any]:
        return {
            "queue_size": len(self._items),
            "is_processing": self.is_processing,
            "high_priority_count": sum(1 for item in self._items if item.priority is Priority.HIGH),
            "processed": self.stats.processed,
            "saved": self.stats.saved,
            "skipped": self.stats.skipped,
            "failed": self.stats.failed,
            "retried": self.stats.retried,
            "dropped": self.stats.dropped,
            "batches": self.stats.batches,
            "failed_batches": self.stats.failed_batches,
            "cache": self.client.get_cache_stats(),
            "rate_limiter": self.client.rate_limiter.get_stats(),
        }
