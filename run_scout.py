#!/usr/bin/env python3
"""
Process entry point for server-scout.

Runs the sweep scheduler as a foreground service by default, or performs a
single maintenance action and exits.

Usage:
    python run_scout.py                          # Run the scheduler in foreground
    python run_scout.py --once                   # One full sweep, then exit
    python run_scout.py --retrain                # Retrain models from feedback
    python run_scout.py --review --kind regional # List predictions needing review
    python run_scout.py --feedback 42 accept     # Record a verdict on prediction 42
    python run_scout.py --enrich 7656119...      # Enrich specific Steam ids
    python run_scout.py --stats                  # Print component stats
"""
import argparse
import asyncio
import json
import signal
import sys

from server_scout.core.config import load_settings
from server_scout.core.context import ScoutContext
from server_scout.core.errors import ConfigurationError, PersistenceError
from server_scout.core.logging import configure_logging, get_logger
from server_scout.core.scheduler import ScoutScheduler

logger = get_logger(__name__)


class ScoutRunner:
    """Runner for the sweep scheduler."""

    def __init__(self, context: ScoutContext):
        self.context = context
        self.scheduler = ScoutScheduler(context)
        self.shutdown = False

    async def start(self):
        """Start the scheduler and run until shutdown."""
        logger.info("🚀 Starting server-scout...")

        if self.context.enrichment is not None:
            self.context.enrichment.start()
        await self.scheduler.start()

        logger.info("✅ server-scout is now running")
        logger.info("Press Ctrl+C to stop")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._set_shutdown)

        while not self.shutdown:
            await asyncio.sleep(1)

        await self.scheduler.stop()
        await self.context.shutdown()
        logger.info("✅ server-scout stopped")

    def _set_shutdown(self):
        """Set shutdown flag."""
        logger.info("⏹️  Shutdown signal received")
        self.shutdown = True


async def run_once(context: ScoutContext) -> int:
    """Run a single full sweep."""
    try:
        result = await context.scanner.full_sweep()
    finally:
        await context.shutdown()

    if result is None:
        print("⚠️  Sweep skipped")
        return 1
    print(json.dumps(result, indent=2))
    return 0


async def run_enrich(context: ScoutContext, steam_ids: list) -> int:
    """Enrich the given ids and wait for the queue to empty."""
    try:
        context.enrichment.process_new_players(steam_ids)
        await context.enrichment.drain()
        print(json.dumps(context.enrichment.get_queue_stats(), indent=2, default=str))
    finally:
        await context.shutdown()
    return 0


def run_retrain(context: ScoutContext) -> int:
    runs = context.classifier.retrain_from_feedback()
    for kind, run in runs.items():
        if run is None:
            print(f"• {kind}: no feedback, skipped")
        else:
            print(f"✅ {kind}: {run['model_version']} "
                  f"(loss {run['loss']:.4f}, accuracy {run['accuracy']:.2%}, "
                  f"{run['samples']} samples)")
    return 0


def run_review(context: ScoutContext, kind, limit: int) -> int:
    rows = context.gateway.predictions_needing_review(kind=kind, limit=limit)

    print("=" * 60)
    print("PREDICTIONS NEEDING REVIEW")
    print("=" * 60)
    print()

    if not rows:
        print("Nothing to review")
        return 0

    for row in rows:
        print(f"📋 #{row['id']} {row['kind']}: {row['label']} ({row['confidence']:.2f}, {row['source']})")
        print(f"   Server: {row['name']} [{row['address']}]")
        print(f"   Map: {row['map']}  Tags: {row['tags']}")
        print(f"   Reason: {row['reason']}")
        print()

    print("=" * 60)
    return 0


def run_feedback(context: ScoutContext, prediction_id: int, verdict: str, reason) -> int:
    if context.gateway.submit_feedback(prediction_id, verdict, reason):
        print(f"✅ Feedback recorded for prediction #{prediction_id}")
        return 0
    print(f"❌ Prediction #{prediction_id} not found or already reviewed")
    return 1


def run_stats(context: ScoutContext) -> int:
    stats = {
        "scanner": context.scanner.get_stats(),
        "classifier": context.classifier.get_stats(),
    }
    if context.enrichment is not None:
        stats["enrichment"] = context.enrichment.get_queue_stats()
        stats["profile_cache"] = context.enrichment.client.get_cache_stats()
    print(json.dumps(stats, indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Discover, probe and classify game servers'
    )

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument(
        '--once',
        action='store_true',
        help='Run a single full sweep and exit'
    )
    actions.add_argument(
        '--retrain',
        action='store_true',
        help='Retrain learned models from manual feedback and exit'
    )
    actions.add_argument(
        '--review',
        action='store_true',
        help='List predictions needing review and exit'
    )
    actions.add_argument(
        '--feedback',
        nargs=2,
        metavar=('PREDICTION_ID', 'VERDICT'),
        help='Record feedback (accept, reject or an explicit label) on a prediction'
    )
    actions.add_argument(
        '--enrich',
        nargs='+',
        metavar='STEAM_ID',
        help='Fetch profile data for the given Steam ids and exit'
    )
    actions.add_argument(
        '--stats',
        action='store_true',
        help='Print component statistics and exit'
    )

    parser.add_argument(
        '--kind',
        choices=('gamemode', 'regional'),
        help='Prediction kind for --review'
    )
    parser.add_argument(
        '--limit',
        type=int,
        default=50,
        help='Maximum rows for --review'
    )
    parser.add_argument(
        '--reason',
        type=str,
        help='Free-text reason for --feedback'
    )
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    settings = load_settings()
    configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    needs_enrichment = not (args.retrain or args.review or args.feedback or args.stats or args.once)

    try:
        context = ScoutContext.from_settings(settings, require_enrichment=needs_enrichment)
        context.startup()
    except (ConfigurationError, PersistenceError) as e:
        logger.error(f"❌ Startup failed: {e}")
        return 1

    if args.enrich:
        if context.enrichment is None:
            logger.error("❌ Player enrichment is disabled")
            return 1
        return asyncio.run(run_enrich(context, args.enrich))

    if args.once:
        return asyncio.run(run_once(context))

    try:
        if args.retrain:
            return run_retrain(context)
        if args.review:
            return run_review(context, args.kind, args.limit)
        if args.feedback:
            prediction_id, verdict = args.feedback
            try:
                prediction_id = int(prediction_id)
            except ValueError:
                print(f"❌ Invalid prediction id: {prediction_id}")
                return 2
            return run_feedback(context, prediction_id, verdict, args.reason)
        if args.stats:
            return run_stats(context)
    except PersistenceError as e:
        logger.error(f"❌ {e}")
        return 1
    finally:
        if args.retrain or args.review or args.feedback or args.stats:
            context.database.dispose()

    runner = ScoutRunner(context)
    try:
        asyncio.run(runner.start())
    except KeyboardInterrupt:
        logger.info("🛑 Received interrupt, shutting down...")
        return 0
    except Exception as e:
        logger.error(f"❌ Scheduler error: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
