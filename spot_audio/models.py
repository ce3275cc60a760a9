"""
Data models for the audio acquisition pipeline.

This module defines the immutable records that flow between pipeline
stages:
    - CanonicalTrack: the request's ground truth (usually from Spotify)
    - ProviderTrackHandle: a provider-specific track ID resolved from it
    - PlaybackManifest / StreamSelection: one quality tier's stream
    - AudioQualityInfo / VerificationResult: post-fetch annotations
    - AudioResult: the pipeline's output contract

All models are frozen dataclasses. Enrichment produces new AudioResult
instances with dataclasses.replace() rather than mutating.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class AudioSource(str, Enum):
    """Source tag of the provider that served an AudioResult."""
    TIDAL = "tidal"
    DEEZER = "deezer"
    YOUTUBE = "youtube"


class QualityTier(str, Enum):
    """
    Ranked audio fidelity levels, declared in descending order.
    
    Values are the tier names the hi-res provider uses in its API.
    """
    HI_RES_LOSSLESS = "HI_RES_LOSSLESS"
    LOSSLESS = "LOSSLESS"
    HIGH = "HIGH"
    
    @property
    def rank(self) -> int:
        """Higher is better."""
        return {
            QualityTier.HI_RES_LOSSLESS: 3,
            QualityTier.LOSSLESS: 2,
            QualityTier.HIGH: 1,
        }[self]
    
    @property
    def is_lossless(self) -> bool:
        return self is not QualityTier.HIGH
    
    @classmethod
    def from_api(cls, value: str | None, default: "QualityTier") -> "QualityTier":
        """Parse a tier name reported by the provider, keeping default when unknown."""
        try:
            return cls(value) if value else default
        except ValueError:
            return default


@dataclass(frozen=True)
class CanonicalTrack:
    """
    The requested track, as resolved from the user's source URL.
    
    Only name, artist, album, duration_ms, isrc and spotify_url drive the
    acquisition pipeline. The remaining fields feed the tag writer.
    
    Attributes:
        name: Track title.
        artist: Primary artist name.
        album: Album name.
        duration_ms: Track duration in milliseconds.
        isrc: International Standard Recording Code, if known.
        spotify_url: Source URL, used as the key for cross-platform lookup.
        album_artist: Album artist, defaults to artist.
        cover_url: Highest-resolution album art URL.
        explicit: Whether the track is marked explicit.
        track_number: Position on its disc.
        total_tracks: Number of tracks on the album.
        disc_number: Disc number.
        release_date: Release date string as reported (YYYY, YYYY-MM or YYYY-MM-DD).
        genre: Genre, if known.
        label: Record label.
        copyright_text: Copyright line.
    """
    name: str
    artist: str
    album: str
    duration_ms: int
    isrc: str | None = None
    spotify_url: str = ""
    album_artist: str | None = None
    cover_url: str | None = None
    explicit: bool = False
    track_number: int | None = None
    total_tracks: int | None = None
    disc_number: int | None = None
    release_date: str | None = None
    genre: str | None = None
    label: str | None = None
    copyright_text: str | None = None
    
    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.name}"
    
    @classmethod
    def from_spotify_api(
        cls,
        track_data: dict[str, Any],
        album_data: dict[str, Any] | None = None
    ) -> "CanonicalTrack":
        """
        Create a CanonicalTrack from Spotify API response data.
        
        Args:
            track_data: Response from spotify.track(track_id).
            album_data: Optional response from spotify.album(album_id) for
                        label, copyright and genre information.
        
        Returns:
            CanonicalTrack populated from the response.
        """
        artists = [a["name"] for a in track_data.get("artists", []) if a.get("name")]
        artist = artists[0] if artists else "Unknown Artist"
        
        album_info = track_data.get("album", {})
        album_artists = album_info.get("artists", [])
        album_artist = album_artists[0]["name"] if album_artists else artist
        
        cover_url = _best_image_url(album_info.get("images", []))
        total_tracks = album_info.get("total_tracks")
        release_date = album_info.get("release_date") or None
        label = None
        copyright_text = None
        genre = None
        
        if album_data:
            label = album_data.get("label") or None
            copyrights = album_data.get("copyrights", [])
            if copyrights:
                copyright_text = copyrights[0].get("text") or None
            genres = album_data.get("genres", [])
            if genres:
                genre = genres[0]
            total_tracks = album_data.get("total_tracks", total_tracks)
            release_date = album_data.get("release_date") or release_date
            cover_url = _best_image_url(album_data.get("images", [])) or cover_url
        
        return cls(
            name=track_data["name"],
            artist=artist,
            album=album_info.get("name", "Unknown Album"),
            duration_ms=track_data.get("duration_ms", 0),
            isrc=track_data.get("external_ids", {}).get("isrc"),
            spotify_url=track_data.get("external_urls", {}).get("spotify", ""),
            album_artist=album_artist,
            cover_url=cover_url,
            explicit=track_data.get("explicit", False),
            track_number=track_data.get("track_number"),
            total_tracks=total_tracks,
            disc_number=track_data.get("disc_number"),
            release_date=release_date,
            genre=genre,
            label=label,
            copyright_text=copyright_text,
        )


def _best_image_url(images: list[dict[str, Any]]) -> str | None:
    if not images:
        return None
    best = max(images, key=lambda img: (img.get("width") or 0) * (img.get("height") or 0))
    return best.get("url")


@dataclass(frozen=True)
class ProviderTrackHandle:
    """
    A provider-specific track identifier resolved from a CanonicalTrack.
    
    Attributes:
        provider: Source tag of the provider the ID belongs to.
        track_id: Numeric ID string.
        isrc: ISRC reported by the provider, if the lookup returned one.
        duration_ms: Duration reported by the provider, if known.
        strategy: Name of the identity strategy that produced the handle.
    """
    provider: str
    track_id: str
    isrc: str | None = None
    duration_ms: int | None = None
    strategy: str = ""


@dataclass(frozen=True)
class CatalogCandidate:
    """One free-text search hit from a provider catalog."""
    track_id: str
    title: str
    artist: str
    duration_ms: int
    isrc: str | None = None


@dataclass(frozen=True)
class PlaybackManifest:
    """
    One quality tier's stream location.
    
    Attributes:
        tier: Tier actually granted (may differ from the one requested).
        stream_url: Direct audio URL.
        encryption_type: Encryption indicator reported by the provider.
    """
    tier: QualityTier
    stream_url: str
    encryption_type: str = "NONE"


@dataclass(frozen=True)
class StreamSelection:
    """Outcome of quality negotiation."""
    stream_url: str
    tier: QualityTier


@dataclass(frozen=True)
class AudioQualityInfo:
    """
    Measured properties of an acquired buffer.
    
    Attributes:
        codec: Codec name as reported by ffprobe.
        bitrate: Measured bitrate in bits per second (0 if unknown).
        sample_rate: Sample rate in Hz.
        channels: Channel count.
        duration: Duration in seconds.
        bit_depth: Bits per sample, when the container reports it.
        is_upscaled: True when a lossless container carries suspiciously
                     little data, hinting at a lossy source.
        upscale_reason: Human-readable explanation when is_upscaled.
    """
    codec: str
    bitrate: int
    sample_rate: int
    channels: int
    duration: float
    bit_depth: int | None = None
    is_upscaled: bool = False
    upscale_reason: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    """
    Acoustic fingerprint verification outcome.
    
    Attributes:
        verified: True if a fingerprint match agreed on title and artist.
        confidence: Score of the best matching result, 0 when unverified.
        matched_title: Title of the matching recording.
        matched_artist: Artists of the matching recording, comma separated.
    """
    verified: bool
    confidence: float
    matched_title: str | None = None
    matched_artist: str | None = None
    
    @classmethod
    def unverified(cls) -> "VerificationResult":
        return cls(verified=False, confidence=0.0)


@dataclass(frozen=True)
class AudioResult:
    """
    The pipeline's output contract.
    
    Attributes:
        buffer: Raw audio bytes, never empty.
        source: Provider that served the audio.
        format: Container format: 'flac', 'mp3', 'm4a' or 'webm'.
        bitrate: Nominal bitrate in kbps, 0 for lossless.
        quality_info: Measured quality, when analysis succeeded.
        verification: Acoustic verification, always set for the fallback source.
        tier: Quality tier granted by a tiered provider.
    
    Raises:
        ValueError: On construction with an empty buffer.
    """
    buffer: bytes
    source: AudioSource
    format: str
    bitrate: int
    quality_info: AudioQualityInfo | None = None
    verification: VerificationResult | None = None
    tier: QualityTier | None = None
    
    def __post_init__(self) -> None:
        if not self.buffer:
            raise ValueError("AudioResult buffer must not be empty")
    
    @property
    def is_lossless(self) -> bool:
        return self.format == "flac"
