"""
External player profile API client.

Endpoints:
- ISteamUser/GetPlayerSummaries/v0002: up to 100 ids per call
- IPlayerService/GetOwnedGames/v0001: one id per call

Successful lookups are cached for 24 hours (``player:<id>`` and
``games:<id>``). Cache hits never touch the network or the rate limiter.
Once the cache holds ``max_cache_entries`` keys, expired entries are purged
before an insert, then the entries closest to expiry are evicted.
Every network attempt first takes a slot from the sliding-window limiter,
then is retried with exponential backoff (1 s, 2 s, 4 s) before the call
fails with ExternalAPIError.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from server_scout.core import metrics
from server_scout.core.errors import ConfigurationError, ExternalAPIError, RateLimitExceeded
from server_scout.core.logging import get_logger
from server_scout.services.enrichment.rate_limiter import SlidingWindowRateLimiter
from server_scout.utils.timezone import from_unix

logger = get_logger(__name__)

PROFILE_API_BASE = "https://api.steampowered.com"
SUMMARIES_PATH = "/ISteamUser/GetPlayerSummaries/v0002/"
OWNED_GAMES_PATH = "/IPlayerService/GetOwnedGames/v0001/"
MAX_IDS_PER_REQUEST = 100


def to_player_record(
    summary: Dict[str, Any],
    owned_games: Optional[Dict[str, Any]],
    app_id: int = 4000
) -> Dict[str, Any]:
    """Map a profile summary (+ owned games, if public) to a players row."""
    record = {
        "steam_id": str(summary["steamid"]),
        "username": summary.get("personaname"),
        "profile_url": summary.get("profileurl"),
        "country": summary.get("loccountrycode") or None,
        "creation_date": from_unix(summary["timecreated"]) if summary.get("timecreated") else None,
        "avatar_url": summary.get("avatarfull") or summary.get("avatarmedium") or summary.get("avatar"),
        "owns_game": False,
        "total_games": 0,
    }

    if owned_games and owned_games.get("games") is not None:
        record["total_games"] = owned_games.get("game_count") or 0
        record["owns_game"] = any(game.get("appid") == app_id for game in owned_games["games"])

    return record


class ProfileApiClient:
    """
    Cached, rate-limited profile API client.

    Args:
        api_key: API key (required)
        rate_limiter: Shared sliding-window limiter
        base_url: API root
        cache_ttl: Cache lifetime in seconds
        max_cache_entries: Cache size at which expired keys are purged
        timeout: Per-request timeout in seconds
        retry_attempts: Retries after the first failed attempt
        retry_base_delay: Backoff base in seconds
        client: Optional pre-configured httpx client

    Raises:
        ConfigurationError: if no API key is given
    """

    def __init__(
        self,
        api_key: str,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        base_url: str = PROFILE_API_BASE,
        cache_ttl: int = 86400,
        max_cache_entries: int = 10000,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            logger.error("❌ STEAM_API_KEY is missing")
            raise ConfigurationError("Profile API key is required but not provided")

        self.api_key = api_key
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.base_url = base_url.rstrip("/")
        self.cache_ttl = cache_ttl
        self.max_cache_entries = max_cache_entries
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

        self._client = client
        self._owns_client = client is None
        self._cache: Dict[str, tuple] = {}  # key -> (data, expiry)
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
        return self._client

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ─────────────────────────────────────────────────────────────────────
    # Cache
    # ─────────────────────────────────────────────────────────────────────

    async def _get_cached(self, key: str) -> Optional[Any]:
        async with self._lock:
            if key in self._cache:
                data, expiry = self._cache[key]
                if datetime.now() < expiry:
                    self._hits += 1
                    return data
                del self._cache[key]
            self._misses += 1
        return None

    async def _set_cache(self, key: str, data: Any) -> None:
        now = datetime.now()
        expiry = now + timedelta(seconds=self.cache_ttl)
        async with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_cache_entries:
                self._evict(now)
            self._cache[key] = (data, expiry)

    def _evict(self, now: datetime) -> None:
        """Drop expired keys, then the soonest-expiring ones until there is room."""
        for key in [k for k, (_, expiry) in self._cache.items() if expiry <= now]:
            del self._cache[key]

        overflow = len(self._cache) - self.max_cache_entries + 1
        if overflow > 0:
            oldest = sorted(self._cache, key=lambda k: self._cache[k][1])[:overflow]
            for key in oldest:
                del self._cache[key]
            logger.debug(f"🧹 Evicted {len(oldest)} profile cache entries")

    def get_cache_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "keys": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total else 0.0,
        }

    # ─────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────

    async def _request_once(self, endpoint: str, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        await self.rate_limiter.acquire()
        client = await self._get_client()

        try:
            response = await client.get(
                f"{self.base_url}{path}",
                params={"key": self.api_key, **params},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            metrics.profile_api_requests_total.labels(endpoint=endpoint, outcome="network_error").inc()
            raise ExternalAPIError(f"{endpoint} request failed: {e}") from e

        if response.status_code == 429:
            metrics.profile_api_requests_total.labels(endpoint=endpoint, outcome="rate_limited").inc()
            raise RateLimitExceeded(f"{endpoint} rejected with HTTP 429")

        if response.status_code >= 400:
            metrics.profile_api_requests_total.labels(endpoint=endpoint, outcome="http_error").inc()
            raise ExternalAPIError(
                f"{endpoint} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            metrics.profile_api_requests_total.labels(endpoint=endpoint, outcome="bad_payload").inc()
            raise ExternalAPIError(f"{endpoint} returned invalid JSON") from e

        if not isinstance(data, dict):
            metrics.profile_api_requests_total.labels(endpoint=endpoint, outcome="bad_payload").inc()
            raise ExternalAPIError(f"{endpoint} returned an unexpected payload")

        metrics.profile_api_requests_total.labels(endpoint=endpoint, outcome="success").inc()
        return data

    async def _request(self, endpoint: str, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        One logical API call with retries.

        Raises:
            ExternalAPIError: after the last attempt fails
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts + 1),
            wait=wait_exponential(multiplier=self.retry_base_delay, max=60),
            retry=retry_if_exception_type((ExternalAPIError, RateLimitExceeded)),
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            f"🔄 {endpoint} retry {attempt.retry_state.attempt_number - 1}"
                            f"/{self.retry_attempts}"
                        )
                    return await self._request_once(endpoint, path, params)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(f"❌ {endpoint} failed after {self.retry_attempts + 1} attempts: {cause}")
            status = getattr(cause, "status_code", None)
            raise ExternalAPIError(f"{endpoint} failed: {cause}", status_code=status) from cause
        raise ExternalAPIError(f"{endpoint} did not run")

    async def get_player_summaries(self, steam_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Profile summaries for ``steam_ids``.

        Ids the API does not know are simply absent from the result.
        """
        results: List[Dict[str, Any]] = []
        uncached: List[str] = []

        for steam_id in steam_ids:
            cached = await self._get_cached(f"player:{steam_id}")
            if cached is not None:
                metrics.profile_cache_hits_total.labels(endpoint="player_summaries").inc()
                results.append(cached)
            else:
                uncached.append(steam_id)

        if not uncached:
            logger.debug(f"All {len(steam_ids)} player summaries served from cache")
            return results

        for start in range(0, len(uncached), MAX_IDS_PER_REQUEST):
            chunk = uncached[start:start + MAX_IDS_PER_REQUEST]
            data = await self._request(
                "player_summaries",
                SUMMARIES_PATH,
                {"steamids": ",".join(chunk)},
            )
            players = (data.get("response") or {}).get("players") or []
            for player in players:
                if "steamid" not in player:
                    continue
                await self._set_cache(f"player:{player['steamid']}", player)
                results.append(player)

        logger.info(f"Retrieved {len(results)} player summaries ({len(uncached)} fetched)")
        return results

    async def get_owned_games(self, steam_id: str) -> Optional[Dict[str, Any]]:
        """
        Owned-games listing for one player.

        Returns:
            The ``response`` object (without ``games`` for private profiles)
        """
        key = f"games:{steam_id}"
        cached = await self._get_cached(key)
        if cached is not None:
            metrics.profile_cache_hits_total.labels(endpoint="owned_games").inc()
            return cached

        data = await self._request(
            "owned_games",
            OWNED_GAMES_PATH,
            {
                "steamid": steam_id,
                "format": "json",
                "include_appinfo": "true",
                "include_played_free_games": "true",
            },
        )
        response = data.get("response")
        if response is None:
            return None

        await self._set_cache(key, response)
        return response
