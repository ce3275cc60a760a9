"""
spot-audio: multi-source audio acquisition with match verification.

Given canonical track metadata (usually from Spotify), spot-audio finds
the same recording on several providers, fetches the best available
stream and proves it is the right track before handing it back.

Architecture:
    Sources are tried in a fixed waterfall:

    PRIMARY (providers/tidal.py, providers/deezer.py)
        - Resolve the track ID by ISRC, then Songlink, then fuzzy search
        - Verify the provider's ISRC or duration before fetching
        - Tidal: negotiate the best quality tier, download the stream
        - Deezer: pick the best format, download and Blowfish-decrypt

    FALLBACK (providers/youtube.py)
        - Search YouTube Music, score candidates, resolve with yt-dlp
        - Stream host checked against an allow-list before download
        - Result verified acoustically (Chromaprint + AcoustID)

    Every successful result is analysed with ffprobe, then transcoded
    to mp3, flac or alac with tags and cover art.

Modules:
    core/       - Configuration, HTTP, logging, exceptions, limiter, caches
    matching/   - Identity resolution and match verification
    providers/  - Tidal, Deezer, YouTube and Songlink clients
    analysis/   - ffprobe quality analysis and acoustic verification
    pipeline/   - Waterfall orchestrator and track processing
    cli.py      - Command-line interface

Usage:
    Command Line:
        spot-audio --url "https://open.spotify.com/track/..." --format flac
        spot-audio --title "Song" --artist "Artist" --duration-ms 215000

    Python API:
        from spot_audio import HttpClient, TrackProcessor, load_config
        from spot_audio.transcode import OutputFormat

        config = load_config()
        async with HttpClient() as http:
            processor = TrackProcessor.from_config(config, http)
            result = await processor.process_track(track, OutputFormat.FLAC)

Dependencies:
    - aiohttp: HTTP transport for every provider
    - asyncio-throttle: Songlink request spacing
    - pycryptodome: Deezer Blowfish/AES
    - ytmusicapi, yt-dlp: YouTube Music search and stream resolution
    - mutagen: MP4 tag atoms
    - spotipy: Spotify metadata for the CLI
    - rich-click, tqdm: CLI and progress bars
    - pyyaml, python-dotenv: Configuration
"""

__version__ = "0.1.0"
__author__ = "spot-audio"
__license__ = "MIT"

# Convenience imports for common usage
from spot_audio.core import (
    AudioUnavailableError,
    Config,
    ConfigError,
    HttpClient,
    ProviderError,
    SpotAudioError,
    get_logger,
    load_config,
    setup_logging,
)
from spot_audio.models import AudioResult, AudioSource, CanonicalTrack
from spot_audio.pipeline import AudioFetcher, TrackProcessor

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "HttpClient",
    "setup_logging",
    "get_logger",
    # Exceptions
    "SpotAudioError",
    "ConfigError",
    "ProviderError",
    "AudioUnavailableError",
    # Models
    "AudioResult",
    "AudioSource",
    "CanonicalTrack",
    # Pipeline
    "AudioFetcher",
    "TrackProcessor",
]
