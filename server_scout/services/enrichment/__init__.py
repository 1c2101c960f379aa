"""
Player enrichment: rate limiter, cached profile API client, priority queue.
"""
from server_scout.services.enrichment.rate_limiter import SlidingWindowRateLimiter
from server_scout.services.enrichment.profile_client import ProfileApiClient, to_player_record
from server_scout.services.enrichment.enrichment_queue import EnrichmentQueue, Priority, QueueItem

__all__ = [
    "SlidingWindowRateLimiter",
    "ProfileApiClient",
    "to_player_record",
    "EnrichmentQueue",
    "Priority",
    "QueueItem",
]
