"""
Utility functions for spot-audio.

    - Filename sanitization (using yt-dlp's sanitize_filename)
    - Spotify track ID extraction
    - Host allow-list checks for outbound URLs
    - Path helpers

Usage:
    from spot_audio.utils import sanitize_filename, extract_track_id
"""

import re
from pathlib import Path
from typing import Iterable, Iterator, Sequence, TypeVar
from urllib.parse import urlparse

from yt_dlp.utils import sanitize_filename as yt_dlp_sanitize


T = TypeVar("T")

_TRACK_ID_PATTERN = re.compile(r"track[/:]([a-zA-Z0-9]+)")


def sanitize_filename(name: str) -> str:
    """
    Sanitize a string for use as a filename.
    
    Examples:
        sanitize_filename("AC/DC")  # "AC⧸DC" (yt-dlp replaces separators)
    """
    return yt_dlp_sanitize(name)


def build_track_filename(artist: str, title: str, extension: str) -> str:
    """'{artist} - {title}.{extension}', sanitized."""
    return f"{sanitize_filename(f'{artist} - {title}')}.{extension}"


def extract_track_id(url: str) -> str | None:
    """
    Extract the Spotify track ID from a URL or URI.
    
    Examples:
        extract_track_id("https://open.spotify.com/track/abc123?si=x")  # "abc123"
        extract_track_id("spotify:track:abc123")                         # "abc123"
        extract_track_id("https://open.spotify.com/album/xyz")           # None
    """
    match = _TRACK_ID_PATTERN.search(url)
    return match.group(1) if match else None


def is_allowed_host(url: str, allowed_hosts: Iterable[str]) -> bool:
    """
    True if url is http(s) and its host equals an allowed host or is a
    sub-domain of one.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not host:
        return False
    return any(host == allowed or host.endswith("." + allowed) for allowed in allowed_hosts)


def ensure_directory(path: Path) -> Path:
    """Create path (and parents) if needed; return it for chaining."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most size items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]
