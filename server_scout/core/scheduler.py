"""
Background job scheduler for server-scout.

Jobs:
- Full sweep: discover + probe every candidate (default every 10 minutes,
  also fired once at start)
- Hot sweep: re-probe the regional-interest set (default every 5 minutes)
- Model retraining from manual feedback (default hourly)
- Stale player refresh for the enrichment queue (default hourly)
- Snapshot retention purge (daily)

Scheduler: APScheduler AsyncIOScheduler. Every job is a coroutine so it runs
on the event loop alongside the scanner and enrichment worker; retraining and
the snapshot purge are handed to the database executor.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from server_scout.core.context import ScoutContext
from server_scout.core.logging import get_logger
from server_scout.utils.timezone import utcnow

logger = get_logger(__name__)


class ScoutScheduler:
    """
    Owns the APScheduler instance and the job definitions.

    Sweeps also guard themselves against overlap; ``max_instances=1`` keeps
    APScheduler from starting a second copy of any job.
    """

    def __init__(self, context: ScoutContext):
        self.context = context
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting scout scheduler...")

        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Only one instance of each job
                "misfire_grace_time": 60,
            }
        )

        self._schedule_full_sweep()
        self._schedule_hot_sweep()
        self._schedule_retraining()
        self._schedule_stale_refresh()
        self._schedule_snapshot_purge()

        self.scheduler.start()
        self.running = True

        logger.info(f"✅ Scheduler started with {len(self.scheduler.get_jobs())} jobs")
        self._log_scheduled_jobs()

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("✅ Scheduler stopped")

    def _schedule_full_sweep(self):
        """
        Schedule: Full discovery sweep.

        Frequency: SCAN_INTERVAL_MINUTES, first run immediately
        """
        if self.scheduler is None:
            return

        minutes = self.context.settings.SCAN_INTERVAL_MINUTES
        scanner = self.context.scanner

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=minutes),
            id="full_sweep",
            name="Full Server Sweep",
            next_run_time=datetime.now(timezone.utc),
        )
        async def full_sweep_job():
            try:
                await scanner.full_sweep()
            except Exception as e:
                logger.error(f"❌ Full sweep failed: {e}")

        logger.info(f"🔍 Scheduled: Full sweep (every {minutes} minutes)")

    def _schedule_hot_sweep(self):
        """
        Schedule: Regional-interest sweep.

        Frequency: HOT_SCAN_INTERVAL_MINUTES
        """
        if self.scheduler is None:
            return

        minutes = self.context.settings.HOT_SCAN_INTERVAL_MINUTES
        scanner = self.context.scanner

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=minutes),
            id="hot_sweep",
            name="Regional Server Sweep",
        )
        async def hot_sweep_job():
            try:
                await scanner.hot_sweep()
            except Exception as e:
                logger.error(f"❌ Hot sweep failed: {e}")

        logger.info(f"🎯 Scheduled: Hot sweep (every {minutes} minutes)")

    def _schedule_retraining(self):
        """
        Schedule: Retrain learned models from manual feedback.

        Frequency: RETRAIN_INTERVAL_MINUTES
        """
        if self.scheduler is None:
            return

        minutes = self.context.settings.RETRAIN_INTERVAL_MINUTES
        classifier = self.context.classifier

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=minutes),
            id="retrain_models",
            name="Retrain Models From Feedback",
        )
        async def retrain_job():
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(self.context.executor, classifier.retrain_from_feedback)
            except Exception as e:
                logger.error(f"❌ Model retraining failed: {e}")

        logger.info(f"📚 Scheduled: Model retraining (every {minutes} minutes)")

    def _schedule_stale_refresh(self):
        """
        Schedule: Queue players whose profile data is stale.

        Frequency: STALE_SWEEP_INTERVAL_MINUTES (only with enrichment enabled)
        """
        if self.scheduler is None or self.context.enrichment is None:
            return

        settings = self.context.settings
        enrichment = self.context.enrichment

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=settings.STALE_SWEEP_INTERVAL_MINUTES),
            id="refresh_stale_players",
            name="Refresh Stale Players",
        )
        async def refresh_job():
            try:
                await enrichment.refresh_stale_players(limit=settings.STALE_SWEEP_LIMIT)
            except Exception as e:
                logger.error(f"❌ Stale player refresh failed: {e}")

        logger.info(
            f"👥 Scheduled: Stale player refresh (every {settings.STALE_SWEEP_INTERVAL_MINUTES} minutes)"
        )

    def _schedule_snapshot_purge(self):
        """
        Schedule: Delete snapshots past the retention window.

        Frequency: Daily
        """
        if self.scheduler is None:
            return

        days = self.context.settings.SNAPSHOT_RETENTION_DAYS
        gateway = self.context.gateway

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(days=1),
            id="purge_snapshots",
            name="Purge Old Snapshots",
        )
        async def purge_job():
            try:
                loop = asyncio.get_running_loop()
                deleted = await loop.run_in_executor(
                    self.context.executor, gateway.purge_snapshots, utcnow() - timedelta(days=days)
                )
                logger.info(f"🧹 Purged {deleted} snapshots older than {days} days")
            except Exception as e:
                logger.error(f"❌ Snapshot purge failed: {e}")

        logger.info(f"🧹 Scheduled: Snapshot purge (daily, keep {days} days)")

    def _log_scheduled_jobs(self):
        for job in self.scheduler.get_jobs():
            logger.info(f"   • {job.name} ({job.id}) next run: {job.next_run_time}")
