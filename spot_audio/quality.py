"""
Quality negotiation for a provider's playback manifests.

Two stages, for clients that support both:
    1. The track manifest endpoint (one request listing every acceptable
       format). Its manifest is an HLS playlist, usually wrapped in a
       base64 data URI; the first audio URL in it is used.
    2. The descending tier ladder, one playback-info request per tier.

Stage 2 runs whenever stage 1 yields nothing, whatever the reason.

A ladder tier is skipped (never raised) when:
    - the HTTP response is not OK
    - the body is XML (an error page) rather than JSON
    - the provider reports an encryption type other than "NONE"
    - the embedded manifest cannot be decoded or names no URL

The first tier that yields a clear stream URL wins; later tiers are not
requested.
"""

import base64
import binascii
import json
import re
from typing import Any, Protocol, Sequence, runtime_checkable

from spot_audio.core.exceptions import ProviderError
from spot_audio.core.http import HttpResponse
from spot_audio.core.logger import get_logger
from spot_audio.models import PlaybackManifest, ProviderTrackHandle, QualityTier, StreamSelection


logger = get_logger(__name__)

HI_RES_LADDER = (QualityTier.HI_RES_LOSSLESS, QualityTier.LOSSLESS, QualityTier.HIGH)
STANDARD_LADDER = (QualityTier.LOSSLESS, QualityTier.HIGH)

# Format names accepted by the track manifest endpoint, best first
HI_RES_MANIFEST_FORMATS = ("FLAC_HIRES", "FLAC", "AACLC")
STANDARD_MANIFEST_FORMATS = ("FLAC", "AACLC")

CD_SAMPLE_RATE = 44100

_HLS_MAP_PATTERN = re.compile(r'EXT-X-MAP:URI="([^"]+)"')


class ManifestSource(Protocol):
    """A provider client able to request one tier's playback manifest."""
    
    name: str
    
    async def playback_info(self, track_id: str, tier: QualityTier) -> HttpResponse:
        ...


@runtime_checkable
class TrackManifestSource(Protocol):
    """A provider client that also serves multi-format track manifests."""
    
    name: str
    
    async def track_manifest(self, track_id: str, formats: Sequence[str]) -> HttpResponse:
        ...


def tier_ladder(prefer_hi_res: bool) -> tuple[QualityTier, ...]:
    """Tiers to request, in order."""
    return HI_RES_LADDER if prefer_hi_res else STANDARD_LADDER


def manifest_formats(prefer_hi_res: bool) -> tuple[str, ...]:
    return HI_RES_MANIFEST_FORMATS if prefer_hi_res else STANDARD_MANIFEST_FORMATS


def extract_hls_audio_url(manifest: str | None) -> str | None:
    """
    Find the audio URL in a track manifest.
    
    Accepts a base64 data URI wrapping an M3U8 playlist, a bare URL, or
    the playlist text itself. In a playlist the first http(s) line wins,
    then the EXT-X-MAP initialization segment.
    """
    if not manifest:
        return None
    
    if manifest.startswith("data:"):
        _, _, payload = manifest.partition(",")
        if not payload:
            return None
        try:
            manifest = base64.b64decode(payload).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            return None
    elif manifest.startswith("http"):
        return manifest
    
    lines = [line.strip() for line in manifest.splitlines()]
    for line in lines:
        if line.startswith("http"):
            return line
    for line in lines:
        match = _HLS_MAP_PATTERN.search(line)
        if match:
            return match.group(1)
    return None


def parse_track_manifest(data: Any) -> PlaybackManifest | None:
    """
    Parse a track manifest response into a usable manifest.
    
    The granted tier is inferred from the codec: FLAC above CD sample rate
    is hi-res, other FLAC is lossless, anything else is the lossy tier.
    
    Returns:
        None when the response has no attributes, carries DRM data, or
        names no audio URL.
    """
    if not isinstance(data, dict):
        return None
    resource = data.get("data")
    attributes = resource.get("attributes") if isinstance(resource, dict) else None
    if not isinstance(attributes, dict):
        return None
    if attributes.get("drmData"):
        return None
    
    urls = attributes.get("urls") or []
    stream_url = extract_hls_audio_url(attributes.get("manifest") or (urls[0] if urls else None))
    if not stream_url:
        return None
    
    codec = str(attributes.get("audioCodec") or attributes.get("codecs") or "").lower()
    tier = QualityTier.HIGH
    if "flac" in codec:
        sample_rate = int(attributes.get("audioSamplingRate") or attributes.get("sampleRate") or CD_SAMPLE_RATE)
        tier = QualityTier.HI_RES_LOSSLESS if sample_rate > CD_SAMPLE_RATE else QualityTier.LOSSLESS
    
    return PlaybackManifest(tier=tier, stream_url=stream_url)


def parse_playback_info(body: str, requested: QualityTier) -> PlaybackManifest | None:
    """
    Parse a playback-info response body into a usable manifest.
    
    Args:
        body: Raw response text.
        requested: Tier that was asked for; used when the response does
                   not name the tier it granted.
    
    Returns:
        PlaybackManifest for an unencrypted stream, or None if this tier
        is unusable for any reason.
    """
    if body.lstrip().startswith("<"):
        return None
    
    try:
        data = json.loads(body)
    except ValueError:
        return None
    
    if not isinstance(data, dict):
        return None
    
    encryption = data.get("encryptionType") or "NONE"
    if encryption != "NONE":
        return None
    
    stream_url = _decode_manifest_url(data.get("manifest"))
    if not stream_url:
        return None
    
    return PlaybackManifest(
        tier=QualityTier.from_api(data.get("audioQuality"), requested),
        stream_url=stream_url,
        encryption_type=encryption,
    )


def _decode_manifest_url(manifest: str | None) -> str | None:
    """Decode the base64 JSON manifest and return its first URL."""
    if not manifest:
        return None
    try:
        decoded = json.loads(base64.b64decode(manifest))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(decoded, dict):
        return None
    urls = decoded.get("urls") or []
    if not urls or not isinstance(urls[0], str):
        return None
    return urls[0]


class QualityNegotiator:
    """
    Picks a stream for one provider: the track manifest first when the
    client offers one, then the tier ladder.
    
    Example:
        negotiator = QualityNegotiator(tidal_client)
        selection = await negotiator.negotiate(handle, prefer_hi_res=True)
        if selection:
            print(selection.tier, selection.stream_url)
    """
    
    def __init__(self, source: ManifestSource) -> None:
        self.source = source
    
    async def negotiate(
        self,
        handle: ProviderTrackHandle,
        prefer_hi_res: bool
    ) -> StreamSelection | None:
        if isinstance(self.source, TrackManifestSource):
            selection = await self._from_track_manifest(handle, prefer_hi_res)
            if selection is not None:
                return selection
            logger.debug(f"[{self.source.name}] track manifest unusable, trying playback info")
        
        return await self._from_ladder(handle, prefer_hi_res)
    
    async def _from_track_manifest(
        self,
        handle: ProviderTrackHandle,
        prefer_hi_res: bool
    ) -> StreamSelection | None:
        try:
            response = await self.source.track_manifest(handle.track_id, manifest_formats(prefer_hi_res))
        except ProviderError as e:
            logger.debug(f"[{self.source.name}] track manifest request failed: {e}")
            return None
        
        if not response.ok:
            logger.debug(f"[{self.source.name}] track manifest failed: {response.status}")
            return None
        
        try:
            manifest = parse_track_manifest(response.json())
        except (ValueError, TypeError):
            manifest = None
        if manifest is None:
            return None
        return StreamSelection(stream_url=manifest.stream_url, tier=manifest.tier)
    
    async def _from_ladder(
        self,
        handle: ProviderTrackHandle,
        prefer_hi_res: bool
    ) -> StreamSelection | None:
        for tier in tier_ladder(prefer_hi_res):
            try:
                response = await self.source.playback_info(handle.track_id, tier)
            except ProviderError as e:
                logger.debug(f"[{self.source.name}] {tier.value} request failed: {e}")
                continue
            
            if not response.ok:
                logger.debug(f"[{self.source.name}] {tier.value} not available: {response.status}")
                continue
            
            manifest = parse_playback_info(response.text(), tier)
            if manifest is None:
                logger.debug(f"[{self.source.name}] {tier.value} unusable (encrypted or malformed)")
                continue
            
            return StreamSelection(stream_url=manifest.stream_url, tier=manifest.tier)
        
        return None
