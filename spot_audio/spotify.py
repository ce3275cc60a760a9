"""
Spotify track metadata for the command line.

Resolves Spotify track URLs into CanonicalTrack objects using spotipy's
client-credentials flow. The acquisition pipeline itself never calls
Spotify; this module only supplies the canonical metadata it starts from.

spotipy is synchronous, so calls run in a worker thread via
asyncio.to_thread.
"""

import asyncio
from typing import Any

import spotipy
from spotipy.oauth2 import SpotifyClientCredentials

from spot_audio.core.exceptions import MetadataError
from spot_audio.core.logger import get_logger
from spot_audio.models import CanonicalTrack
from spot_audio.utils import extract_track_id


logger = get_logger(__name__)


class SpotifyMetadataResolver:
    """
    Fetches track and album data from the Spotify Web API.

    Attributes:
        _spotify: The underlying spotipy.Spotify instance.

    Example:
        resolver = SpotifyMetadataResolver(client_id, client_secret)
        track = await resolver.resolve("https://open.spotify.com/track/...")
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        spotify: spotipy.Spotify | None = None
    ) -> None:
        if spotify is None:
            if not client_id or not client_secret:
                raise MetadataError(
                    "Spotify credentials are required to resolve track URLs. "
                    "Set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET."
                )
            auth_manager = SpotifyClientCredentials(
                client_id=client_id,
                client_secret=client_secret
            )
            spotify = spotipy.Spotify(auth_manager=auth_manager)
        self._spotify = spotify

    async def resolve(self, url: str) -> CanonicalTrack:
        """
        Resolve a Spotify track URL or URI.

        Raises:
            MetadataError: If the URL is not a track URL or the API fails.
        """
        track_id = extract_track_id(url)
        if track_id is None:
            raise MetadataError(f"Not a Spotify track URL: {url}", details={"url": url})

        track_data = await asyncio.to_thread(self._fetch, "track", track_id)
        album_data = None
        album_id = track_data.get("album", {}).get("id")
        if album_id:
            try:
                album_data = await asyncio.to_thread(self._fetch, "album", album_id)
            except MetadataError as e:
                # Album details only enrich tags
                logger.debug(f"Album lookup failed for {album_id}: {e}")

        track = CanonicalTrack.from_spotify_api(track_data, album_data)
        logger.debug(f"Resolved {url} -> {track.display_name} (ISRC {track.isrc})")
        return track

    def _fetch(self, kind: str, item_id: str) -> dict[str, Any]:
        try:
            result = getattr(self._spotify, kind)(item_id)
        except spotipy.SpotifyException as e:
            if e.http_status == 429:
                raise MetadataError(
                    f"Rate limited while fetching {kind}: {item_id}",
                    details={"id": item_id, "http_status": 429}
                ) from e
            raise MetadataError(
                f"Failed to fetch {kind}: {e}",
                details={"id": item_id, "original_error": str(e)}
            ) from e
        if not result:
            raise MetadataError(f"{kind.capitalize()} not found: {item_id}", details={"id": item_id})
        return result
