"""
Discovery source adapters.

Each adapter exposes ``name`` and ``async discover() -> set[str]`` and never
raises; ``discover_candidates`` runs them together and unions the results.
"""
import asyncio
from typing import List, Sequence

from server_scout.core.logging import get_logger
from server_scout.services.discovery.master_server import MasterServerAdapter
from server_scout.services.discovery.listing import ListingAdapter

logger = get_logger(__name__)


async def discover_candidates(adapters: Sequence) -> List[str]:
    """
    Run every adapter concurrently and union their candidates.

    Returns:
        Sorted, de-duplicated "ip:port" list
    """
    results = await asyncio.gather(
        *(adapter.discover() for adapter in adapters),
        return_exceptions=True,
    )

    candidates = set()
    for adapter, result in zip(adapters, results):
        if isinstance(result, BaseException):
            logger.error(f"Discovery adapter {getattr(adapter, 'name', adapter)} failed: {result}")
            continue
        candidates.update(result)

    logger.info(f"📊 Discovered {len(candidates)} unique servers")
    return sorted(candidates)


__all__ = [
    "MasterServerAdapter",
    "ListingAdapter",
    "discover_candidates",
]
