"""
Deezer provider: ARL cookie session, catalog client and audio source.

Session:
    The long-lived 'arl' cookie is presented to the internal gw-light API
    (deezer.getUserData), which returns a CSRF-style api token
    ('checkForm'), a media license token, and a fresh 'sid' cookie. The
    composite cookie header "arl=...; sid=..." is used for the rest of the
    session. Sessions are recomputed for every track fetch.

Audio:
    resolve identity -> song.getData -> verify ISRC/duration -> pick the
    best available format -> media URL (session-token path, legacy CDN
    URL as fallback) -> download -> Blowfish stripe decryption.
"""

from dataclasses import dataclass
from typing import Any

from spot_audio.core.config import DeezerConfig
from spot_audio.core.exceptions import ProviderError
from spot_audio.core.http import HttpClient
from spot_audio.core.logger import get_logger
from spot_audio.core.result import Failure, FailureReason, Ok, Result
from spot_audio.crypto import FORMAT_CODES, build_legacy_stream_url, decrypt_payload
from spot_audio.matching.identity import IdentityResolver
from spot_audio.matching.verify import verify_match
from spot_audio.models import (
    AudioResult,
    AudioSource,
    CanonicalTrack,
    CatalogCandidate,
    ProviderTrackHandle,
)
from spot_audio.providers.songlink import SonglinkResolver


logger = get_logger(__name__)

PROVIDER_NAME = AudioSource.DEEZER.value

GW_LIGHT_URL = "https://www.deezer.com/ajax/gw-light.php"
MEDIA_URL = "https://media.deezer.com/v1/get_url"
PUBLIC_API_URL = "https://api.deezer.com/2.0"
SEARCH_LIMIT = 10

LOOKUP_TIMEOUT_SECONDS = 10
DOWNLOAD_TIMEOUT_SECONDS = 30
LOSSLESS_DOWNLOAD_TIMEOUT_SECONDS = 120

STREAM_CIPHER = "BF_CBC_STRIPE"

# Media-API rights/geo errors: the track exists but this path cannot serve it
MEDIA_RIGHTS_ERROR_CODES = {2002, 2009}


@dataclass(frozen=True)
class DeezerFormat:
    """One downloadable Deezer format."""
    name: str
    filesize_field: str
    container: str
    bitrate: int
    
    @property
    def code(self) -> int:
        return FORMAT_CODES[self.name]


FLAC = DeezerFormat("FLAC", "FILESIZE_FLAC", "flac", 0)
MP3_320 = DeezerFormat("MP3_320", "FILESIZE_MP3_320", "mp3", 320)
MP3_128 = DeezerFormat("MP3_128", "FILESIZE_MP3_128", "mp3", 128)

FORMATS_BY_NAME = {f.name: f for f in (FLAC, MP3_320, MP3_128)}


@dataclass(frozen=True)
class DeezerSession:
    """
    Credentials for one gw-light session.
    
    Attributes:
        api_token: 'checkForm' CSRF token for gw-light calls.
        cookie_header: Composite "arl=...; sid=..." cookie.
        license_token: Token for the media URL endpoint, may be empty.
    """
    api_token: str
    cookie_header: str
    license_token: str = ""


@dataclass(frozen=True)
class DeezerTrackData:
    """The song.getData fields used for verification and streaming."""
    sng_id: str
    md5_origin: str
    media_version: str
    isrc: str | None
    duration_ms: int
    track_token: str | None
    filesizes: dict[str, int]
    
    @classmethod
    def from_gw(cls, results: dict[str, Any]) -> "DeezerTrackData":
        return cls(
            sng_id=str(results["SNG_ID"]),
            md5_origin=str(results["MD5_ORIGIN"]),
            media_version=str(results.get("MEDIA_VERSION") or ""),
            isrc=results.get("ISRC") or None,
            duration_ms=int(results.get("DURATION") or 0) * 1000,
            track_token=results.get("TRACK_TOKEN") or None,
            filesizes={
                fmt.filesize_field: int(results.get(fmt.filesize_field) or 0)
                for fmt in FORMATS_BY_NAME.values()
            },
        )


def available_formats(track_data: DeezerTrackData, prefer_lossless: bool) -> list[DeezerFormat]:
    """Formats to try, best first, keeping only those with a non-zero file size."""
    ladder = [FLAC, MP3_320, MP3_128] if prefer_lossless else [MP3_320, MP3_128]
    return [fmt for fmt in ladder if track_data.filesizes.get(fmt.filesize_field, 0) > 0]


def build_cookie_header(arl: str, sid: str | None) -> str:
    if sid:
        return f"arl={arl}; sid={sid}"
    return f"arl={arl}"


class DeezerClient:
    """
    Deezer public catalog API and gw-light internal API.
    
    Catalog methods (lookup_isrc, search) need no session. Every method
    raises ProviderError on transport failure.
    """
    
    name = PROVIDER_NAME
    
    def __init__(self, http: HttpClient, config: DeezerConfig) -> None:
        self.http = http
        self.config = config
    
    # -- public catalog -----------------------------------------------------
    
    async def lookup_isrc(self, isrc: str) -> ProviderTrackHandle | None:
        response = await self.http.request(
            "GET", f"{PUBLIC_API_URL}/track/isrc:{isrc}", timeout=LOOKUP_TIMEOUT_SECONDS
        )
        if not response.ok:
            return None
        data = response.json()
        # Unknown ISRCs come back as 200 with an "error" object
        if not data.get("id") or data.get("error"):
            return None
        return ProviderTrackHandle(
            provider=PROVIDER_NAME,
            track_id=str(data["id"]),
            isrc=data.get("isrc") or None,
            duration_ms=int(data.get("duration") or 0) * 1000 or None,
        )
    
    async def search(self, query: str) -> list[CatalogCandidate]:
        response = await self.http.request(
            "GET",
            f"{PUBLIC_API_URL}/search/track",
            params={"q": query, "limit": str(SEARCH_LIMIT)},
            timeout=LOOKUP_TIMEOUT_SECONDS,
        )
        if not response.ok:
            return []
        return [
            CatalogCandidate(
                track_id=str(item["id"]),
                title=item.get("title", ""),
                artist=(item.get("artist") or {}).get("name", ""),
                duration_ms=int(item.get("duration") or 0) * 1000,
                isrc=item.get("isrc"),
            )
            for item in response.json().get("data") or []
            if item.get("id")
        ]
    
    # -- gw-light session ---------------------------------------------------
    
    async def open_session(self) -> DeezerSession | None:
        """
        Exchange the ARL cookie for an api token, license token and sid.
        
        Returns:
            DeezerSession, or None if no ARL is configured or it was rejected.
        """
        arl = self.config.arl
        if not arl:
            return None
        
        response = await self.http.request(
            "GET",
            GW_LIGHT_URL,
            params=_gw_params("deezer.getUserData", api_token=""),
            headers={"Cookie": build_cookie_header(arl, None)},
            timeout=LOOKUP_TIMEOUT_SECONDS,
        )
        if not response.ok:
            logger.debug(f"[deezer] getUserData failed: {response.status}")
            return None
        
        results = response.json().get("results") or {}
        api_token = results.get("checkForm")
        user_id = (results.get("USER") or {}).get("USER_ID")
        if not api_token or not user_id:
            logger.warning("[deezer] ARL cookie rejected or expired (no API token returned)")
            return None
        
        license_token = ((results.get("USER") or {}).get("OPTIONS") or {}).get("license_token", "")
        return DeezerSession(
            api_token=api_token,
            cookie_header=build_cookie_header(arl, response.cookies.get("sid")),
            license_token=license_token or "",
        )
    
    async def song_data(self, session: DeezerSession, track_id: str) -> DeezerTrackData | None:
        response = await self.http.request(
            "POST",
            GW_LIGHT_URL,
            params=_gw_params("song.getData", api_token=session.api_token),
            headers={"Cookie": session.cookie_header},
            json_body={"sng_id": track_id},
            timeout=LOOKUP_TIMEOUT_SECONDS,
        )
        if not response.ok:
            return None
        results = response.json().get("results") or {}
        if not results.get("SNG_ID") or not results.get("MD5_ORIGIN"):
            return None
        return DeezerTrackData.from_gw(results)
    
    async def media_url(
        self,
        session: DeezerSession,
        track_token: str,
        formats: list[DeezerFormat]
    ) -> tuple[str, DeezerFormat] | None:
        """
        Ask the media endpoint for the best of the given formats.
        
        Returns:
            (url, format granted), or None when the endpoint cannot serve it.
        """
        if not session.license_token or not formats:
            return None
        
        response = await self.http.request(
            "POST",
            MEDIA_URL,
            json_body={
                "license_token": session.license_token,
                "media": [{
                    "type": "FULL",
                    "formats": [{"cipher": STREAM_CIPHER, "format": f.name} for f in formats],
                }],
                "track_tokens": [track_token],
            },
            timeout=LOOKUP_TIMEOUT_SECONDS,
        )
        if not response.ok:
            return None
        
        data = response.json()
        entry = (data.get("data") or [{}])[0]
        media = entry.get("media") or []
        if not media:
            errors = data.get("errors") or entry.get("errors") or []
            codes = {e.get("code") for e in errors}
            if errors and not codes.issubset(MEDIA_RIGHTS_ERROR_CODES):
                logger.debug(f"[deezer] media endpoint error: {errors}")
            return None
        
        granted = FORMATS_BY_NAME.get(media[0].get("format", ""))
        sources = media[0].get("sources") or []
        if granted is None or not sources:
            return None
        return sources[0]["url"], granted


def _gw_params(method: str, api_token: str) -> dict[str, str]:
    return {
        "method": method,
        "input": "3",
        "api_version": "1.0",
        "api_token": api_token,
    }


class DeezerSource:
    """
    Lossless-capable audio source backed by Deezer.
    
    attempt() never raises for expected failures; it returns a Failure with
    the reason the provider could not serve the track.
    """
    
    name = PROVIDER_NAME
    
    def __init__(
        self,
        http: HttpClient,
        config: DeezerConfig,
        songlink: SonglinkResolver | None = None
    ) -> None:
        self.http = http
        self.client = DeezerClient(http, config)
        self.resolver = IdentityResolver(self.client, songlink, songlink_platform="deezer")
    
    async def attempt(self, track: CanonicalTrack, prefer_lossless: bool) -> Result[AudioResult]:
        if not self.client.config.arl:
            return Failure(FailureReason.SESSION_UNAVAILABLE, "no Deezer ARL configured")
        
        resolved = await self.resolver.resolve(track)
        if isinstance(resolved, Failure):
            return resolved
        handle = resolved.value
        
        try:
            session = await self.client.open_session()
            if session is None:
                return Failure(FailureReason.SESSION_UNAVAILABLE, "ARL rejected")
            track_data = await self.client.song_data(session, handle.track_id)
        except (ProviderError, ValueError, AttributeError) as e:
            return Failure(FailureReason.FETCH_FAILED, f"gw-light: {e}")
        
        if track_data is None:
            return Failure(FailureReason.IDENTITY_NOT_FOUND, f"no track data for {handle.track_id}")
        
        if not verify_match(track, track_data.isrc, track_data.duration_ms):
            return Failure(
                FailureReason.IDENTITY_MISMATCH,
                f"Deezer ISRC {track_data.isrc} / {track_data.duration_ms}ms vs "
                f"{track.isrc} / {track.duration_ms}ms",
            )
        
        formats = available_formats(track_data, prefer_lossless)
        if not formats:
            return Failure(FailureReason.NO_USABLE_TIER, "no downloadable format")
        
        stream = await self._stream_url(session, track_data, formats)
        if stream is None:
            return Failure(FailureReason.STREAM_UNAVAILABLE, "no media URL")
        url, fmt = stream
        
        timeout = LOSSLESS_DOWNLOAD_TIMEOUT_SECONDS if fmt is FLAC else DOWNLOAD_TIMEOUT_SECONDS
        try:
            response = await self.http.request("GET", url, timeout=timeout)
        except ProviderError as e:
            return Failure(FailureReason.FETCH_FAILED, str(e))
        
        if not response.ok:
            return Failure(FailureReason.FETCH_FAILED, f"CDN fetch failed: {response.status}")
        if not response.body:
            return Failure(FailureReason.EMPTY_PAYLOAD, "Deezer CDN returned no data")
        
        decrypted = decrypt_payload(response.body, track_data.sng_id)
        if not decrypted:
            return Failure(FailureReason.DECRYPT_FAILED, f"track {track_data.sng_id}")
        
        logger.debug(f"[deezer] using format {fmt.name}")
        return Ok(AudioResult(
            buffer=decrypted,
            source=AudioSource.DEEZER,
            format=fmt.container,
            bitrate=fmt.bitrate,
        ))
    
    async def _stream_url(
        self,
        session: DeezerSession,
        track_data: DeezerTrackData,
        formats: list[DeezerFormat]
    ) -> tuple[str, DeezerFormat] | None:
        if track_data.track_token:
            try:
                granted = await self.client.media_url(session, track_data.track_token, formats)
            except (ProviderError, ValueError, AttributeError, KeyError) as e:
                logger.debug(f"[deezer] media URL request failed: {e}")
                granted = None
            if granted is not None:
                return granted
        
        fmt = formats[0]
        url = build_legacy_stream_url(
            track_data.md5_origin, track_data.media_version, track_data.sng_id, fmt.code
        )
        if url is None:
            return None
        return url, fmt
