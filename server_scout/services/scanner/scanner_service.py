"""
Batch query scheduler.

Fans discovered addresses out to UDP probes in bounded batches, persists
and classifies the servers that answer, and keeps the regional-interest set
that the hot sweep re-probes more often.

Sweeps:
- full_sweep: discover candidates from every adapter, probe them all
- hot_sweep: probe only the regional-interest set

A sweep started while another sweep of the same kind is still running is
skipped. Per-address failures are counted and logged; they never abort the
batch or the sweep and are not retried within it.

Storage and classification run on the database executor, so a slow or
retrying write never stalls the event loop or the probes in flight.

Usage:
    scanner = ScannerService(gateway, classifier, ServerProber(5.0), adapters)
    scanner.initialize()
    await scanner.full_sweep()
"""
import asyncio
import time
from concurrent.futures import Executor
from dataclasses import dataclass
from functools import partial
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from server_scout.core import metrics
from server_scout.core.errors import PersistenceError
from server_scout.core.logging import clear_sweep_id, get_logger, new_sweep_id
from server_scout.services.classification import ClassificationService, ServerClassification
from server_scout.services.discovery import discover_candidates
from server_scout.services.query.prober import ProbeResult, ServerProber, split_address
from server_scout.utils.timezone import utcnow

logger = get_logger(__name__)

ONLINE = "online"
OFFLINE = "offline"
FAILED = "failed"


@dataclass
class ScanStats:
    total_servers: int = 0
    online_servers: int = 0
    offline_servers: int = 0
    failed_servers: int = 0
    sweeps: int = 0
    skipped_sweeps: int = 0
    last_scan: Optional[datetime] = None
    last_duration_ms: Optional[int] = None


def server_record(result: ProbeResult) -> Dict[str, Any]:
    """
    Server columns from a probe result.

    Without an info reply only the address is known; the upsert then
    refreshes liveness and leaves the stored descriptive fields alone.
    """
    record: Dict[str, Any] = {"ip": result.ip, "port": result.port}
    info = result.info
    if info is None:
        return record

    record.update({
        "name": info.name,
        "map": info.map,
        "tags": info.keywords or None,
        "game_dir": info.folder,
        "game_description": info.game,
        "max_players": info.max_players,
        "password_protected": info.password_protected,
        "secure": info.secure,
        "version": info.version,
        "os": info.environment,
        "server_type": info.server_type,
        "game_id": info.app_id,
    })
    return record


class ScannerService:
    """
    Drives probes, persistence and classification for server sweeps.

    Args:
        gateway: Persistence gateway
        classifier: Classification service (already initialized)
        prober: UDP prober
        adapters: Discovery adapters used by the full sweep
        max_concurrent_queries: Probes per batch
        batch_pause: Seconds between batches
        offline_after: Failed probes before a server is marked inactive
        sleep: Coroutine used for the inter-batch pause
        executor: Executor for storage and classification work (the loop's
            default executor when omitted)
    """

    def __init__(
        self,
        gateway,
        classifier: ClassificationService,
        prober: ServerProber,
        adapters: Sequence = (),
        max_concurrent_queries: int = 50,
        batch_pause: float = 1.0,
        offline_after: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        executor: Optional[Executor] = None,
    ):
        self.gateway = gateway
        self.classifier = classifier
        self.prober = prober
        self.adapters = list(adapters)
        self.max_concurrent_queries = max_concurrent_queries
        self.batch_pause = batch_pause
        self.offline_after = offline_after
        self._sleep = sleep
        self.executor = executor

        self.regional_servers: Set[str] = set()
        self.stats = ScanStats()
        self._locks = {"full": asyncio.Lock(), "hot": asyncio.Lock()}

    def initialize(self) -> None:
        """Seed the regional-interest set from stored predictions."""
        try:
            self.regional_servers = set(self.gateway.regional_addresses())
        except PersistenceError as e:
            logger.error(f"Could not load regional servers: {e}")
            self.regional_servers = set()
        metrics.regional_servers.set(len(self.regional_servers))
        logger.info(f"✅ Scanner initialized ({len(self.regional_servers)} regional servers)")

    # ─────────────────────────────────────────────────────────────────────
    # Runtime tunables
    # ─────────────────────────────────────────────────────────────────────

    def set_max_concurrent_queries(self, value: int) -> None:
        if value < 1:
            raise ValueError("max_concurrent_queries must be at least 1")
        self.max_concurrent_queries = value
        logger.info(f"⚙️ Max concurrent queries set to {value}")

    def set_query_timeout(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError("query timeout must be positive")
        self.prober.timeout = seconds
        logger.info(f"⚙️ Query timeout set to {seconds}s")

    # ─────────────────────────────────────────────────────────────────────
    # Per-address handling
    # ─────────────────────────────────────────────────────────────────────

    async def probe_address(self, address: str) -> str:
        """
        Probe one address and record the outcome.

        Returns:
            "online" or "offline"

        Raises:
            PersistenceError: if storing the outcome failed
        """
        result = await self.prober.probe(address)
        if not result.online:
            ip, port = split_address(address)
            await self._run_blocking(self.gateway.mark_server_seen, ip, port, self.offline_after)
            return OFFLINE

        classification = await self._run_blocking(self._save, result)
        if classification is not None:
            self._update_regional(result.address, classification.is_regional)
        return ONLINE

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    def _save(self, result: ProbeResult) -> Optional[ServerClassification]:
        """Upsert, classify and snapshot one online server (runs on the executor)."""
        server_id = self.gateway.upsert_server(server_record(result))

        classification: Optional[ServerClassification] = None
        if result.info is not None:
            classification = self.classifier.classify_and_store(
                server_id,
                result.info.name,
                result.info.keywords,
                result.info.map,
            )

        player_count = len(result.players) if result.players is not None else (
            result.info.players if result.info else 0
        )
        snapshot = {
            "player_count": player_count,
            "max_players": result.info.max_players if result.info else 0,
            "bot_count": result.info.bots if result.info else 0,
            "map": result.info.map if result.info else None,
            "ping_ms": result.latency_ms,
        }
        if classification is not None:
            snapshot.update({
                "gamemode": classification.gamemode.stored_label,
                "gamemode_confidence": float(classification.gamemode.confidence),
                "is_regional": classification.is_regional,
                "regional_confidence": float(classification.regional.confidence),
            })
        self.gateway.insert_snapshot(server_id, snapshot)
        return classification

    def _update_regional(self, address: str, is_regional: bool) -> None:
        if is_regional:
            if address not in self.regional_servers:
                logger.info(f"🎯 {address} added to regional servers")
            self.regional_servers.add(address)
        else:
            self.regional_servers.discard(address)
        metrics.regional_servers.set(len(self.regional_servers))

    async def _scan_one(self, address: str) -> str:
        try:
            outcome = await self.probe_address(address)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"⚠️ Scan of {address} failed: {e}")
            outcome = FAILED
        metrics.probe_results_total.labels(outcome=outcome).inc()
        return outcome

    # ─────────────────────────────────────────────────────────────────────
    # Batches and sweeps
    # ─────────────────────────────────────────────────────────────────────

    async def scan_batch(self, addresses: Sequence[str]) -> Dict[str, int]:
        """
        Probe ``addresses`` in batches of ``max_concurrent_queries``.

        Returns:
            Outcome counts for this call
        """
        counts = {ONLINE: 0, OFFLINE: 0, FAILED: 0}
        addresses = list(addresses)
        size = self.max_concurrent_queries
        batches = [addresses[i:i + size] for i in range(0, len(addresses), size)]

        logger.info(f"🔍 Querying {len(addresses)} servers in {len(batches)} batches...")
        for index, batch in enumerate(batches):
            logger.debug(f"🔄 Batch {index + 1}/{len(batches)} ({len(batch)} servers)")
            outcomes = await asyncio.gather(*(self._scan_one(address) for address in batch))
            for outcome in outcomes:
                counts[outcome] += 1

            if index < len(batches) - 1:
                await self._sleep(self.batch_pause)

        self.stats.total_servers += len(addresses)
        self.stats.online_servers += counts[ONLINE]
        self.stats.offline_servers += counts[OFFLINE]
        self.stats.failed_servers += counts[FAILED]
        return counts

    async def _sweep(self, kind: str, addresses_fn: Callable[[], Awaitable[List[str]]]) -> Optional[Dict[str, Any]]:
        lock = self._locks[kind]
        if lock.locked():
            self.stats.skipped_sweeps += 1
            metrics.sweeps_skipped_total.labels(kind=kind).inc()
            logger.warning(f"⚠️ {kind} sweep still running, skipping this run")
            return None

        async with lock:
            token = new_sweep_id(kind)
            started = time.perf_counter()
            self.stats.last_scan = utcnow()
            try:
                logger.info(f"🔍 Starting {kind} sweep...")
                addresses = await addresses_fn()
                counts = await self.scan_batch(addresses)

                duration_ms = int((time.perf_counter() - started) * 1000)
                self.stats.sweeps += 1
                self.stats.last_duration_ms = duration_ms
                metrics.sweep_duration_seconds.labels(kind=kind).observe(duration_ms / 1000)
                logger.info(
                    f"✅ {kind} sweep: {counts[ONLINE]} online, {counts[OFFLINE]} offline, "
                    f"{counts[FAILED]} failed of {len(addresses)} ({duration_ms}ms)"
                )
                return {"kind": kind, "addresses": len(addresses), "duration_ms": duration_ms, **counts}
            finally:
                clear_sweep_id(token)

    async def full_sweep(self) -> Optional[Dict[str, Any]]:
        """Discover and probe every candidate; None if skipped."""
        return await self._sweep("full", lambda: discover_candidates(self.adapters))

    async def hot_sweep(self) -> Optional[Dict[str, Any]]:
        """Re-probe the regional-interest set; None if skipped."""
        async def regional() -> List[str]:
            return sorted(self.regional_servers)

        return await self._sweep("hot", regional)

    def is_scanning(self) -> bool:
        return any(lock.locked() for lock in self._locks.values())

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_servers": self.stats.total_servers,
            "online_servers": self.stats.online_servers,
            "offline_servers": self.stats.offline_servers,
            "failed_servers": self.stats.failed_servers,
            "regional_servers": len(self.regional_servers),
            "sweeps": self.stats.sweeps,
            "skipped_sweeps": self.stats.skipped_sweeps,
            "last_scan": self.stats.last_scan.isoformat() if self.stats.last_scan else None,
            "last_duration_ms": self.stats.last_duration_ms,
            "is_scanning": self.is_scanning(),
            "max_concurrent_queries": self.max_concurrent_queries,
            "query_timeout": self.prober.timeout,
        }
