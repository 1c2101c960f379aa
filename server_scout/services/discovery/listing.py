"""
HTTP listing discovery adapter.

One GET against a public server listing that answers
``{"servers": [{"ip": "...", "port": 27015}, ...]}``.
"""
from typing import Optional, Set

import httpx

from server_scout.core.logging import get_logger

logger = get_logger(__name__)


class ListingAdapter:
    """
    Discovery source backed by an HTTP server listing.

    Args:
        url: Listing endpoint
        limit: Maximum number of servers to request
        timeout: Request timeout in seconds
        client: Optional pre-configured client (tests inject a MockTransport)
    """

    name = "listing"

    def __init__(
        self,
        url: str,
        limit: int = 1000,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.limit = limit
        self.timeout = timeout
        self._client = client

    async def _get(self) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(self.url, params={"limit": self.limit}, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(self.url, params={"limit": self.limit})

    async def discover(self) -> Set[str]:
        """
        Fetch the listing.

        Returns:
            Set of "ip:port" candidates (empty on any failure)
        """
        logger.info(f"Discovering servers from listing {self.url}")
        try:
            response = await self._get()
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Listing discovery failed: HTTP {e.response.status_code}")
            return set()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Listing discovery failed: {e}")
            return set()

        servers = payload.get("servers") if isinstance(payload, dict) else None
        if not isinstance(servers, list):
            logger.warning("Listing response has no server list")
            return set()

        addresses = set()
        for server in servers:
            if not isinstance(server, dict):
                continue
            ip = server.get("ip")
            port = server.get("port")
            if ip and port:
                addresses.add(f"{ip}:{port}")

        logger.info(f"✅ Listing: {len(addresses)} servers discovered")
        return addresses
