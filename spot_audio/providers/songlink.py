"""
Cross-platform link resolution via the Songlink (Odesli) API.

Given a source URL (e.g. a Spotify track link), Songlink returns the same
recording's IDs on other platforms. The public API has a strict global
budget, so every outbound call must pass two gates:
    - a sliding window of MAX_REQUESTS_PER_WINDOW calls per WINDOW_SECONDS,
      checked without waiting (a spent budget means "no result")
    - a minimum gap of MIN_GAP_SECONDS between consecutive calls, enforced
      by waiting (asyncio-throttle)

Responses are cached per source URL for CACHE_TTL_SECONDS. One resolver
instance is shared by every provider in the process.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable

from asyncio_throttle import Throttler

from spot_audio.core.cache import SlidingWindowLimiter, TTLCache
from spot_audio.core.exceptions import ProviderError
from spot_audio.core.http import HttpClient
from spot_audio.core.logger import get_logger


logger = get_logger(__name__)

SONGLINK_API_URL = "https://api.song.link/v1-alpha.1/links"
USER_COUNTRY = "US"
REQUEST_TIMEOUT_SECONDS = 10

CACHE_TTL_SECONDS = 60 * 60
MAX_REQUESTS_PER_WINDOW = 8
WINDOW_SECONDS = 60
MIN_GAP_SECONDS = 7.0

# Platform keys extracted from linksByPlatform
SUPPORTED_PLATFORMS = ("deezer", "tidal")


@dataclass(frozen=True)
class SonglinkLinks:
    """Platform -> track ID mapping for one source URL."""
    ids: dict[str, str]
    
    def id_for(self, platform: str) -> str | None:
        return self.ids.get(platform)


def parse_songlink_response(data: dict[str, Any]) -> SonglinkLinks:
    """
    Extract platform track IDs from a /links response.
    
    linksByPlatform.<platform>.entityUniqueId points into
    entitiesByUniqueId, whose 'id' field is the platform's native ID.
    """
    links_by_platform = data.get("linksByPlatform") or {}
    entities = data.get("entitiesByUniqueId") or {}
    ids: dict[str, str] = {}
    
    for platform in SUPPORTED_PLATFORMS:
        entity_key = (links_by_platform.get(platform) or {}).get("entityUniqueId")
        if not entity_key:
            continue
        entity_id = (entities.get(entity_key) or {}).get("id")
        if entity_id:
            ids[platform] = str(entity_id)
    
    return SonglinkLinks(ids=ids)


class SonglinkResolver:
    """
    Rate-limited, cached Songlink client.
    
    Args:
        http: Shared HTTP transport.
        enabled: When False, resolve() always returns None without I/O.
        clock: Monotonic clock in seconds (injectable for tests).
        min_gap_seconds: Minimum spacing between outbound calls.
    """
    
    def __init__(
        self,
        http: HttpClient,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        min_gap_seconds: float = MIN_GAP_SECONDS
    ) -> None:
        self.http = http
        self.enabled = enabled
        self._cache: TTLCache[str, SonglinkLinks] = TTLCache(CACHE_TTL_SECONDS, clock=clock)
        self._window = SlidingWindowLimiter(MAX_REQUESTS_PER_WINDOW, WINDOW_SECONDS, clock=clock)
        self._throttler = Throttler(rate_limit=1, period=min_gap_seconds)
    
    async def resolve(self, source_url: str) -> SonglinkLinks | None:
        """
        Resolve a source URL to platform IDs.
        
        Returns:
            SonglinkLinks (possibly empty), or None when disabled, when the
            request budget is spent, or when the call fails.
        """
        if not self.enabled:
            return None
        
        cached = self._cache.get(source_url)
        if cached is not None:
            return cached
        
        if not self._window.try_acquire():
            logger.debug("[songlink] request budget exhausted, skipping lookup")
            return None
        
        async with self._throttler:
            try:
                response = await self.http.request(
                    "GET",
                    SONGLINK_API_URL,
                    params={"url": source_url, "userCountry": USER_COUNTRY},
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
            except ProviderError as e:
                logger.debug(f"[songlink] lookup failed: {e}")
                return None
        
        if not response.ok:
            logger.debug(f"[songlink] API error: {response.status}")
            return None
        
        try:
            links = parse_songlink_response(response.json())
        except (ValueError, AttributeError) as e:
            logger.debug(f"[songlink] malformed response: {e}")
            return None
        
        self._cache.set(source_url, links)
        return links
