"""
Audio providers.

    - tidal:    OAuth session, catalog lookups, tiered hi-res streams
    - deezer:   ARL session, gw-light API, Blowfish-encrypted streams
    - youtube:  YouTube Music search and yt-dlp stream resolution
    - songlink: Cross-platform ID lookup shared by Tidal and Deezer
"""

from spot_audio.providers.deezer import DeezerClient, DeezerSource
from spot_audio.providers.songlink import SonglinkResolver
from spot_audio.providers.tidal import TidalClient, TidalSessionManager, TidalSource
from spot_audio.providers.youtube import YouTubeSource

__all__ = [
    "DeezerClient",
    "DeezerSource",
    "SonglinkResolver",
    "TidalClient",
    "TidalSessionManager",
    "TidalSource",
    "YouTubeSource",
]
