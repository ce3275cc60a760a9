"""
Track identity matching.

Resolves a CanonicalTrack to provider-specific IDs and checks that a
candidate actually is the requested recording before any audio is fetched.
"""

from spot_audio.matching.identity import (
    CatalogProvider,
    IdentityResolver,
    artists_match,
    clean_title,
    normalize_artist,
)
from spot_audio.matching.verify import DURATION_TOLERANCE_MS, verify_match

__all__ = [
    "CatalogProvider",
    "IdentityResolver",
    "artists_match",
    "clean_title",
    "normalize_artist",
    "DURATION_TOLERANCE_MS",
    "verify_match",
]
