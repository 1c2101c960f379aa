"""
Process-wide component wiring.

The entry point builds exactly one ScoutContext from Settings and passes it
(or its members) to whatever needs them. There are no module-level service
singletons.

Blocking storage work from coroutines goes through one thread pool sized to
the database pool, so it never asks for more connections than the pool holds.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from server_scout.core.config import Settings
from server_scout.core.database import Database
from server_scout.core.errors import ConfigurationError
from server_scout.core.logging import get_logger
from server_scout.repositories.gateway import PersistenceGateway
from server_scout.services.classification import ClassificationService
from server_scout.services.discovery import ListingAdapter, MasterServerAdapter
from server_scout.services.enrichment import EnrichmentQueue, ProfileApiClient, SlidingWindowRateLimiter
from server_scout.services.query import ServerProber
from server_scout.services.scanner import ScannerService

logger = get_logger(__name__)


@dataclass
class ScoutContext:
    settings: Settings
    database: Database
    gateway: PersistenceGateway
    classifier: ClassificationService
    scanner: ScannerService
    executor: Optional[ThreadPoolExecutor] = None
    enrichment: Optional[EnrichmentQueue] = None

    @classmethod
    def from_settings(cls, settings: Settings, require_enrichment: bool = True) -> "ScoutContext":
        """
        Build every component.

        Raises:
            ConfigurationError: if enrichment is enabled without an API key
                and ``require_enrichment`` is set
        """
        missing = settings.validate_required_secrets()
        if missing and require_enrichment:
            raise ConfigurationError(f"Missing required secrets: {', '.join(missing)}")

        database = Database(settings.DATABASE_URL, pool_size=settings.DB_POOL_SIZE)
        executor = ThreadPoolExecutor(max_workers=settings.DB_POOL_SIZE, thread_name_prefix="scout-db")
        gateway = PersistenceGateway(
            database,
            retry_attempts=settings.DB_RETRY_ATTEMPTS,
            retry_base_delay=settings.DB_RETRY_BASE_DELAY,
        )

        classifier = ClassificationService(
            gateway,
            vocabulary_size=settings.VOCABULARY_SIZE,
            model_dir=settings.model_dir,
            gamemode_gate=settings.GAMEMODE_CONFIDENCE_THRESHOLD,
            gamemode_rule_confident=settings.GAMEMODE_RULE_CONFIDENT,
            regional_confident=settings.REGIONAL_CONFIDENCE_THRESHOLD,
            review_threshold=settings.REVIEW_THRESHOLD,
            regional_review_floor=settings.REGIONAL_REVIEW_FLOOR,
            retrain_epochs=settings.RETRAIN_EPOCHS,
        )

        adapters = [
            MasterServerAdapter(
                host=settings.MASTER_SERVER_HOST,
                port=settings.MASTER_SERVER_PORT,
                game_dir=settings.GAME_DIR,
                budget=settings.MASTER_QUERY_BUDGET,
            ),
            ListingAdapter(
                url=settings.LISTING_URL,
                limit=settings.LISTING_LIMIT,
                timeout=settings.LISTING_TIMEOUT,
            ),
        ]

        scanner = ScannerService(
            gateway,
            classifier,
            ServerProber(timeout=settings.QUERY_TIMEOUT),
            adapters,
            max_concurrent_queries=settings.MAX_CONCURRENT_QUERIES,
            batch_pause=settings.BATCH_PAUSE,
            offline_after=settings.OFFLINE_AFTER_FAILURES,
            executor=executor,
        )

        enrichment = None
        if settings.ENRICHMENT_ENABLED and settings.STEAM_API_KEY:
            client = ProfileApiClient(
                settings.STEAM_API_KEY,
                rate_limiter=SlidingWindowRateLimiter(
                    max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
                    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
                ),
                base_url=settings.PROFILE_API_BASE,
                cache_ttl=settings.PROFILE_CACHE_TTL,
                max_cache_entries=settings.PROFILE_CACHE_MAX_ENTRIES,
                timeout=settings.PROFILE_REQUEST_TIMEOUT,
                retry_attempts=settings.PROFILE_RETRY_ATTEMPTS,
                retry_base_delay=settings.PROFILE_RETRY_BASE_DELAY,
            )
            enrichment = EnrichmentQueue(
                client,
                gateway,
                batch_size=settings.ENRICHMENT_BATCH_SIZE,
                batch_delay=settings.ENRICHMENT_BATCH_DELAY,
                max_retries=settings.ENRICHMENT_MAX_RETRIES,
                refresh_interval=timedelta(hours=settings.PLAYER_REFRESH_HOURS),
                app_id=settings.GAME_APP_ID,
                executor=executor,
            )
        elif settings.ENRICHMENT_ENABLED:
            logger.warning("⚠️ Player enrichment disabled: STEAM_API_KEY is not set")

        return cls(
            settings=settings,
            database=database,
            gateway=gateway,
            classifier=classifier,
            scanner=scanner,
            executor=executor,
            enrichment=enrichment,
        )

    def startup(self) -> None:
        """
        Create tables and warm up the components.

        Raises:
            PersistenceError: if the database cannot be initialized
        """
        self.database.init_db()
        self.classifier.initialize()
        self.scanner.initialize()

    async def shutdown(self) -> None:
        if self.enrichment is not None:
            await self.enrichment.stop()
            await self.enrichment.client.close()
        if self.executor is not None:
            self.executor.shutdown(wait=True)
        self.database.dispose()
        logger.info("✅ Components shut down")
