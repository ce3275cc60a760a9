"""
Track processing: acquisition, cover art, transcoding and tagging.

TrackProcessor is the top of the pipeline. For each CanonicalTrack it:
    1. Acquires the best audio through the AudioFetcher waterfall
    2. Downloads the cover image, if its host is on the allow-list
    3. Transcodes to the requested format with tags and cover embedded
    4. For ALAC output, adds the advisory and catalog atoms

build_audio_fetcher() wires the providers, the shared Songlink resolver,
the quality analyzer and the acoustic verifier from a Config.
"""

from dataclasses import dataclass

from spot_audio.analysis import AcousticVerifier, QualityAnalyzer
from spot_audio.core.config import Config
from spot_audio.core.exceptions import MetadataError, ProviderError
from spot_audio.core.http import HttpClient
from spot_audio.core.limiter import ConcurrencyLimiter
from spot_audio.core.logger import get_logger
from spot_audio.models import AudioResult, CanonicalTrack
from spot_audio.pipeline.waterfall import AudioFetcher
from spot_audio.providers.deezer import DeezerSource
from spot_audio.providers.songlink import SonglinkResolver
from spot_audio.providers.tidal import TidalSessionManager, TidalSource
from spot_audio.providers.youtube import YouTubeSource
from spot_audio.tagging import CatalogIds, patch_mp4_tags
from spot_audio.transcode import OutputFormat, Transcoder
from spot_audio.utils import is_allowed_host


logger = get_logger(__name__)


ALLOWED_ART_HOSTS = (
    "i.scdn.co",
    "mosaic.scdn.co",
    "image-cdn-ak.spotifycdn.com",
    "image-cdn-fa.spotifycdn.com",
    "mzstatic.com",
    "resources.tidal.com",
)

ART_TIMEOUT_SECONDS = 15
MAX_ART_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class ProcessedTrack:
    """
    A finished track.

    Attributes:
        track: The metadata the file was built from.
        filename: Suggested file name, extension included.
        buffer: File contents.
        audio: The acquired audio, with quality and verification info.
    """
    track: CanonicalTrack
    filename: str
    buffer: bytes
    audio: AudioResult


def build_audio_fetcher(config: Config, http: HttpClient) -> AudioFetcher:
    """
    Assemble the waterfall from configuration.

    Primary order is Tidal then Deezer; YouTube is the fallback. One
    Songlink resolver is shared so its cache and rate budget are global.
    """
    songlink = SonglinkResolver(http, enabled=config.songlink.enabled)
    tidal_session = TidalSessionManager(http, config.tidal)

    primary_sources = [
        TidalSource(http, tidal_session, songlink),
        DeezerSource(http, config.deezer, songlink),
    ]
    return AudioFetcher(
        primary_sources=primary_sources,
        fallback_source=YouTubeSource(http),
        analyzer=QualityAnalyzer(),
        verifier=AcousticVerifier(http, config.acoustid.api_key),
    )


class TrackProcessor:
    """
    Turns canonical metadata into a finished, tagged audio file.

    Attributes:
        fetcher: The acquisition waterfall.
        transcoder: ffmpeg runner with its own concurrency limit.
        http: Transport used for cover art.

    Example:
        processor = TrackProcessor.from_config(config, http)
        result = await processor.process_track(track, OutputFormat.FLAC)
    """

    def __init__(self, fetcher: AudioFetcher, transcoder: Transcoder, http: HttpClient) -> None:
        self.fetcher = fetcher
        self.transcoder = transcoder
        self.http = http

    @classmethod
    def from_config(cls, config: Config, http: HttpClient) -> "TrackProcessor":
        transcoder = Transcoder(
            ConcurrencyLimiter(config.transcode.max_concurrent),
            timeout=config.transcode.timeout_seconds,
            max_output_bytes=config.transcode.max_output_bytes,
        )
        return cls(build_audio_fetcher(config, http), transcoder, http)

    async def process_track(
        self,
        track: CanonicalTrack,
        requested_format: OutputFormat,
        lyrics: str | None = None,
        catalog_ids: CatalogIds | None = None
    ) -> ProcessedTrack:
        """
        Acquire, transcode and tag one track.

        Args:
            track: Canonical metadata.
            requested_format: Output format asked for.
            lyrics: Optional lyrics to embed.
            catalog_ids: Optional iTunes catalog IDs for ALAC output.

        Returns:
            ProcessedTrack with the file name and contents.

        Raises:
            AudioUnavailableError: No source could supply the track.
        """
        audio = await self.fetcher.fetch_best_audio(
            track, prefer_lossless=requested_format.is_lossless
        )
        logger.info(
            f"{track.display_name}: {audio.source.value} {audio.format}"
            + (f" ({audio.tier.value})" if audio.tier else "")
        )

        cover_art = await self.fetch_cover_art(track)
        output = await self.transcoder.transcode(
            audio, track, requested_format, cover_art=cover_art, lyrics=lyrics
        )

        buffer = output.buffer
        if output.output_format is OutputFormat.ALAC:
            try:
                buffer = patch_mp4_tags(buffer, explicit=track.explicit, catalog_ids=catalog_ids)
            except MetadataError as e:
                logger.warning(f"{track.display_name}: could not write MP4 tag atoms: {e}")

        return ProcessedTrack(track=track, filename=output.filename, buffer=buffer, audio=audio)

    async def fetch_cover_art(self, track: CanonicalTrack) -> bytes | None:
        """Download the cover image, or None if absent, disallowed or failed."""
        if not track.cover_url:
            return None
        if not is_allowed_host(track.cover_url, ALLOWED_ART_HOSTS):
            logger.warning(f"{track.display_name}: cover art host not allowed: {track.cover_url}")
            return None

        try:
            response = await self.http.request(
                "GET", track.cover_url, timeout=ART_TIMEOUT_SECONDS, max_bytes=MAX_ART_BYTES
            )
        except ProviderError as e:
            logger.debug(f"{track.display_name}: cover art download failed: {e}")
            return None

        if not response.ok or not response.body:
            logger.debug(f"{track.display_name}: cover art returned HTTP {response.status}")
            return None
        return response.body
