"""
Tidal provider: OAuth session, catalog client and audio source.

Session:
    A refresh token is exchanged for a short-lived access token, cached
    with a 60-second early-expiry margin. If the refresh flow is not
    configured or fails, a static access token from the configuration is
    used instead. With neither, the provider is unavailable and skipped.

    State machine: UNSET -> REFRESHING -> VALID | FALLBACK | UNAVAILABLE.
    VALID goes back to REFRESHING once the clock reaches expires_at.
    Concurrent callers may refresh redundantly; refresh is idempotent.

Audio:
    resolve identity -> verify ISRC/duration -> track manifest, else the
    quality ladder -> download (unencrypted streams only).
"""

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

from spot_audio.core.config import TidalConfig
from spot_audio.core.exceptions import ProviderError
from spot_audio.core.http import HttpClient, HttpResponse
from spot_audio.core.logger import get_logger
from spot_audio.core.result import Failure, FailureReason, Ok, Result
from spot_audio.matching.identity import IdentityResolver
from spot_audio.matching.verify import verify_match
from spot_audio.models import (
    AudioResult,
    AudioSource,
    CanonicalTrack,
    CatalogCandidate,
    ProviderTrackHandle,
    QualityTier,
)
from spot_audio.providers.songlink import SonglinkResolver
from spot_audio.quality import QualityNegotiator


logger = get_logger(__name__)

PROVIDER_NAME = AudioSource.TIDAL.value

TOKEN_URL = "https://auth.tidal.com/v1/oauth2/token"
TOKEN_SCOPE = "r_usr w_usr"
TOKEN_EXPIRY_MARGIN_SECONDS = 60

API_V1_URL = "https://api.tidal.com/v1"
OPENAPI_V2_URL = "https://openapi.tidal.com/v2"
COUNTRY_CODE = "US"
SEARCH_LIMIT = 10

LOOKUP_TIMEOUT_SECONDS = 10
MANIFEST_TIMEOUT_SECONDS = 15
DOWNLOAD_TIMEOUT_SECONDS = 120

LOSSY_BITRATE_KBPS = 320

# A catalog duration further than this from the request rejects the match,
# even when the ISRC agrees
DURATION_CROSS_CHECK_MS = 5000

_ISO_DURATION_PATTERN = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?")


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# SESSION
# =============================================================================

class SessionState(Enum):
    UNSET = "unset"
    REFRESHING = "refreshing"
    VALID = "valid"
    FALLBACK = "fallback"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class TokenEntry:
    """A cached access token and its expiry (epoch milliseconds)."""
    access_token: str
    expires_at: int


def is_token_valid(entry: TokenEntry | None, now_ms: int) -> bool:
    """A cached token may be used only strictly before its expiry."""
    return entry is not None and now_ms < entry.expires_at


class TidalSessionManager:
    """
    Long-lived owner of the Tidal access token.
    
    Args:
        http: Shared HTTP transport.
        config: Tidal credentials.
        clock: Wall clock in epoch milliseconds (injectable for tests).
    """
    
    def __init__(
        self,
        http: HttpClient,
        config: TidalConfig,
        clock: Callable[[], int] = _now_ms
    ) -> None:
        self.http = http
        self.config = config
        self.clock = clock
        self.state = SessionState.UNSET
        self._entry: TokenEntry | None = None
    
    async def get_access_token(self) -> str | None:
        """
        Return a usable access token, refreshing if needed.
        
        Returns:
            Token string, or None when the provider is unavailable.
        """
        if is_token_valid(self._entry, self.clock()):
            return self._entry.access_token
        
        if not self.config.can_refresh:
            return self._fallback("refresh flow not configured")
        
        self.state = SessionState.REFRESHING
        form = {
            "grant_type": "refresh_token",
            "refresh_token": self.config.refresh_token,
            "client_id": self.config.client_id,
            "scope": TOKEN_SCOPE,
        }
        if self.config.client_secret:
            form["client_secret"] = self.config.client_secret
        
        try:
            response = await self.http.request(
                "POST", TOKEN_URL, data=form, timeout=LOOKUP_TIMEOUT_SECONDS
            )
        except ProviderError as e:
            return self._fallback(f"token refresh error: {e}")
        
        if not response.ok:
            return self._fallback(f"token refresh failed: {response.status}")
        
        try:
            data = response.json()
            access_token = data["access_token"]
            expires_in = int(data["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            return self._fallback(f"malformed token response: {e}")
        
        self._entry = TokenEntry(
            access_token=access_token,
            expires_at=self.clock() + (expires_in - TOKEN_EXPIRY_MARGIN_SECONDS) * 1000,
        )
        self.state = SessionState.VALID
        logger.debug("[tidal] access token refreshed")
        return access_token
    
    def _fallback(self, reason: str) -> str | None:
        if self.config.access_token:
            logger.debug(f"[tidal] using static access token ({reason})")
            self.state = SessionState.FALLBACK
            return self.config.access_token
        logger.debug(f"[tidal] session unavailable ({reason})")
        self.state = SessionState.UNAVAILABLE
        return None


# =============================================================================
# CATALOG CLIENT
# =============================================================================

def parse_iso_duration(value: str) -> int:
    """
    Parse an ISO 8601 duration such as 'PT3M17S' into whole seconds.
    
    Returns:
        Seconds, or 0 when the string is not a duration.
    """
    match = _ISO_DURATION_PATTERN.fullmatch(value.strip())
    if not match or not any(match.groups()):
        return 0
    hours, minutes, seconds = match.groups()
    return int(hours or 0) * 3600 + int(minutes or 0) * 60 + int(float(seconds or 0))


class TidalClient:
    """
    Tidal catalog and playback endpoints, authorized by a session manager.
    
    Every method raises ProviderError on transport failure and returns
    None / [] when the provider answers without a usable result.
    """
    
    name = PROVIDER_NAME
    
    def __init__(self, http: HttpClient, session: TidalSessionManager) -> None:
        self.http = http
        self.session = session
    
    async def _auth_headers(self, accept: str | None = None) -> dict[str, str]:
        token = await self.session.get_access_token()
        if not token:
            raise ProviderError("Tidal session unavailable", provider=PROVIDER_NAME)
        headers = {"Authorization": f"Bearer {token}"}
        if accept:
            headers["Accept"] = accept
        return headers
    
    async def lookup_isrc(self, isrc: str) -> ProviderTrackHandle | None:
        response = await self.http.request(
            "GET",
            f"{OPENAPI_V2_URL}/tracks",
            params={"filter[isrc]": isrc, "countryCode": COUNTRY_CODE},
            headers=await self._auth_headers(),
            timeout=LOOKUP_TIMEOUT_SECONDS,
        )
        if not response.ok:
            logger.debug(f"[tidal] ISRC lookup failed: {response.status}")
            return None
        
        items = response.json().get("data") or []
        if not items or not items[0].get("id"):
            return None
        
        attributes = items[0].get("attributes") or {}
        return ProviderTrackHandle(
            provider=PROVIDER_NAME,
            track_id=str(items[0]["id"]),
            isrc=attributes.get("isrc"),
            duration_ms=_duration_ms(attributes.get("duration")),
        )
    
    async def search(self, query: str) -> list[CatalogCandidate]:
        response = await self.http.request(
            "GET",
            f"{API_V1_URL}/search/tracks",
            params={"query": query, "countryCode": COUNTRY_CODE, "limit": str(SEARCH_LIMIT)},
            headers=await self._auth_headers(),
            timeout=LOOKUP_TIMEOUT_SECONDS,
        )
        if not response.ok:
            logger.debug(f"[tidal] title search failed: {response.status}")
            return []
        
        return [
            _candidate_from_v1(item)
            for item in response.json().get("items") or []
            if item.get("id")
        ]
    
    async def track_metadata(self, track_id: str) -> tuple[str | None, int | None] | None:
        """Return (isrc, duration_ms) from the v2 track resource."""
        response = await self.http.request(
            "GET",
            f"{OPENAPI_V2_URL}/tracks/{track_id}",
            params={"countryCode": COUNTRY_CODE},
            headers=await self._auth_headers(accept="application/vnd.api+json"),
            timeout=LOOKUP_TIMEOUT_SECONDS,
        )
        if not response.ok:
            return None
        attributes = (response.json().get("data") or {}).get("attributes") or {}
        return attributes.get("isrc"), _duration_ms(attributes.get("duration"))
    
    async def track_manifest(self, track_id: str, formats: Sequence[str]) -> HttpResponse:
        """Request an HLS manifest offering any of the given formats."""
        params = [
            ("adaptive", "false"),
            ("manifestType", "HLS"),
            ("uriScheme", "DATA"),
            ("usage", "PLAYBACK"),
        ]
        params.extend(("formats", audio_format) for audio_format in formats)
        return await self.http.request(
            "GET",
            f"{OPENAPI_V2_URL}/trackManifests/{track_id}",
            params=params,
            headers=await self._auth_headers(),
            timeout=MANIFEST_TIMEOUT_SECONDS,
        )
    
    async def playback_info(self, track_id: str, tier: QualityTier) -> HttpResponse:
        return await self.http.request(
            "GET",
            f"{API_V1_URL}/tracks/{track_id}/playbackinfopostpaywall/v4",
            params={
                "audioquality": tier.value,
                "playbackmode": "STREAM",
                "assetpresentation": "FULL",
            },
            headers=await self._auth_headers(),
            timeout=LOOKUP_TIMEOUT_SECONDS,
        )


def _duration_ms(value: Any) -> int | None:
    """Tidal reports durations as ISO strings (v2) or seconds (v1)."""
    if value is None:
        return None
    if isinstance(value, str):
        seconds = parse_iso_duration(value)
        return seconds * 1000 if seconds else None
    return int(value) * 1000


def _candidate_from_v1(item: dict[str, Any]) -> CatalogCandidate:
    artists = [a.get("name", "") for a in item.get("artists") or []]
    artist = ", ".join(a for a in artists if a) or (item.get("artist") or {}).get("name", "")
    return CatalogCandidate(
        track_id=str(item["id"]),
        title=item.get("title", ""),
        artist=artist,
        duration_ms=int(item.get("duration") or 0) * 1000,
        isrc=item.get("isrc"),
    )


# =============================================================================
# AUDIO SOURCE
# =============================================================================

class TidalSource:
    """
    Lossless-capable audio source backed by Tidal.
    
    attempt() never raises for expected failures; it returns a Failure with
    the reason the provider could not serve the track.
    """
    
    name = PROVIDER_NAME
    
    def __init__(
        self,
        http: HttpClient,
        session: TidalSessionManager,
        songlink: SonglinkResolver | None = None
    ) -> None:
        self.http = http
        self.session = session
        self.client = TidalClient(http, session)
        self.resolver = IdentityResolver(self.client, songlink, songlink_platform="tidal")
        self.negotiator = QualityNegotiator(self.client)
    
    async def attempt(self, track: CanonicalTrack, prefer_lossless: bool) -> Result[AudioResult]:
        if not await self.session.get_access_token():
            return Failure(FailureReason.SESSION_UNAVAILABLE, "no Tidal credentials")
        
        resolved = await self.resolver.resolve(track)
        if isinstance(resolved, Failure):
            return resolved
        handle = resolved.value
        
        if not await self._verify(handle, track):
            return Failure(
                FailureReason.IDENTITY_MISMATCH,
                f"Tidal track {handle.track_id} does not match ISRC or duration",
            )
        
        selection = await self.negotiator.negotiate(handle, prefer_hi_res=prefer_lossless)
        if selection is None:
            return Failure(FailureReason.NO_USABLE_TIER, f"no clear stream for {handle.track_id}")
        
        try:
            response = await self.http.request(
                "GET", selection.stream_url, timeout=DOWNLOAD_TIMEOUT_SECONDS
            )
        except ProviderError as e:
            return Failure(FailureReason.FETCH_FAILED, str(e))
        
        if not response.ok:
            return Failure(FailureReason.FETCH_FAILED, f"audio download failed: {response.status}")
        if not response.body:
            return Failure(FailureReason.EMPTY_PAYLOAD, "Tidal returned an empty stream")
        
        lossless = selection.tier.is_lossless
        logger.debug(f"[tidal] streaming quality: {selection.tier.value}")
        return Ok(AudioResult(
            buffer=response.body,
            source=AudioSource.TIDAL,
            format="flac" if lossless else "m4a",
            bitrate=0 if lossless else LOSSY_BITRATE_KBPS,
            tier=selection.tier,
        ))
    
    async def _verify(self, handle: ProviderTrackHandle, track: CanonicalTrack) -> bool:
        isrc, duration_ms = handle.isrc, handle.duration_ms
        
        if isrc is None and duration_ms is None:
            try:
                metadata = await self.client.track_metadata(handle.track_id)
            except (ProviderError, ValueError, AttributeError) as e:
                logger.debug(f"[tidal] metadata fetch failed for {handle.track_id}: {e}")
                metadata = None
            if metadata is not None:
                isrc, duration_ms = metadata
        
        if (
            duration_ms is not None
            and track.duration_ms > 0
            and abs(duration_ms - track.duration_ms) > DURATION_CROSS_CHECK_MS
        ):
            logger.debug(
                f"[tidal] duration of {handle.track_id} is {duration_ms} ms, "
                f"expected {track.duration_ms} ms"
            )
            return False
        
        return verify_match(track, isrc, duration_ms)
