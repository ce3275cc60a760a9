"""
Identity resolution: CanonicalTrack -> ProviderTrackHandle.

Three strategies are tried in strict order, stopping at the first hit:
    1. ISRC lookup on the provider's ISRC-indexed endpoint
    2. Cross-platform link resolution keyed on the source URL (Songlink)
    3. Free-text search on "{artist} {cleaned title}", accepting the first
       result within FUZZY_DURATION_TOLERANCE_MS whose normalized artist
       overlaps the requested artist

A strategy that raises (network error, malformed body) is logged and the
next strategy is tried. Resolution never raises.
"""

import re
from typing import TYPE_CHECKING, Protocol

from spot_audio.core.exceptions import ProviderError
from spot_audio.core.logger import get_logger
from spot_audio.core.result import Failure, FailureReason, Ok, Result
from spot_audio.models import CanonicalTrack, CatalogCandidate, ProviderTrackHandle

if TYPE_CHECKING:
    from spot_audio.providers.songlink import SonglinkResolver


logger = get_logger(__name__)

# Duration tolerance when accepting a free-text search hit
FUZZY_DURATION_TOLERANCE_MS = 5000

# Strategy names recorded on the resolved handle
STRATEGY_ISRC = "isrc"
STRATEGY_SONGLINK = "songlink"
STRATEGY_SEARCH = "search"

# "(feat. X)", "[ft. X]", "(featuring X)"
_FEATURE_PATTERN = re.compile(
    r"\s*[\(\[]\s*(?:feat\.?|ft\.?|featuring)\s[^\)\]]*[\)\]]",
    re.IGNORECASE
)

# " - Remastered 2011", " - 2011 Remaster", "(Radio Edit)", " - Single Version"
_SUFFIX_PATTERN = re.compile(
    r"\s*(?:-\s*|[\(\[]\s*)"
    r"(?:\d{4}\s+)?"
    r"(?:remaster(?:ed)?(?:\s+(?:version|\d{4}))?|radio\s+edit|single\s+version)"
    r"(?:\s+\d{4})?\s*[\)\]]?\s*$",
    re.IGNORECASE
)

_NON_ALNUM_PATTERN = re.compile(r"[\W_]+", re.UNICODE)


class CatalogProvider(Protocol):
    """What the resolver needs from a provider catalog client."""
    
    name: str
    
    async def lookup_isrc(self, isrc: str) -> ProviderTrackHandle | None:
        ...
    
    async def search(self, query: str) -> list[CatalogCandidate]:
        ...


def clean_title(title: str) -> str:
    """
    Strip featured-artist annotations and version suffixes from a title.
    
    Example:
        >>> clean_title("Song (feat. Other) - Remastered 2011")
        'Song'
    """
    cleaned = _FEATURE_PATTERN.sub("", title)
    cleaned = _SUFFIX_PATTERN.sub("", cleaned)
    return cleaned.strip()


def normalize_artist(artist: str) -> str:
    """Lowercase and drop every non-alphanumeric character."""
    return _NON_ALNUM_PATTERN.sub("", artist.lower())


def artists_match(candidate: str, expected: str) -> bool:
    """
    True if either normalized artist string contains the other.
    
    Short names over-match (e.g. "A" and "Ashes"); an artist that
    normalizes to an empty string never matches.
    """
    a = normalize_artist(candidate)
    b = normalize_artist(expected)
    if not a or not b:
        return False
    return a in b or b in a


class IdentityResolver:
    """
    Resolves canonical tracks against one provider catalog.
    
    Args:
        provider: Catalog client of the provider.
        songlink: Shared cross-platform resolver, or None to skip strategy 2.
        songlink_platform: Platform key of this provider in Songlink responses.
    """
    
    def __init__(
        self,
        provider: CatalogProvider,
        songlink: "SonglinkResolver | None" = None,
        songlink_platform: str | None = None
    ) -> None:
        self.provider = provider
        self.songlink = songlink
        self.songlink_platform = songlink_platform or provider.name
    
    async def resolve(self, track: CanonicalTrack) -> Result[ProviderTrackHandle]:
        """Run the strategies in order; Ok(handle) on the first hit."""
        strategies = (
            (STRATEGY_ISRC, self._by_isrc),
            (STRATEGY_SONGLINK, self._by_songlink),
            (STRATEGY_SEARCH, self._by_search),
        )
        
        for name, strategy in strategies:
            try:
                handle = await strategy(track)
            except (ProviderError, ValueError, KeyError, TypeError, AttributeError) as e:
                logger.debug(
                    f"[{self.provider.name}] identity strategy '{name}' failed "
                    f"for {track.display_name}: {e}"
                )
                continue
            
            if handle is not None:
                logger.debug(
                    f"[{self.provider.name}] resolved {track.display_name} "
                    f"-> {handle.track_id} via {name}"
                )
                return Ok(handle)
        
        return Failure(FailureReason.IDENTITY_NOT_FOUND, f"no {self.provider.name} match")
    
    async def _by_isrc(self, track: CanonicalTrack) -> ProviderTrackHandle | None:
        if not track.isrc:
            return None
        handle = await self.provider.lookup_isrc(track.isrc)
        if handle is None:
            return None
        return ProviderTrackHandle(
            provider=handle.provider,
            track_id=handle.track_id,
            isrc=handle.isrc,
            duration_ms=handle.duration_ms,
            strategy=STRATEGY_ISRC,
        )
    
    async def _by_songlink(self, track: CanonicalTrack) -> ProviderTrackHandle | None:
        if self.songlink is None or not track.spotify_url:
            return None
        links = await self.songlink.resolve(track.spotify_url)
        if links is None:
            return None
        track_id = links.id_for(self.songlink_platform)
        if not track_id:
            return None
        return ProviderTrackHandle(
            provider=self.provider.name,
            track_id=track_id,
            strategy=STRATEGY_SONGLINK,
        )
    
    async def _by_search(self, track: CanonicalTrack) -> ProviderTrackHandle | None:
        query = f"{track.artist} {clean_title(track.name)}"
        candidates = await self.provider.search(query)
        
        for candidate in candidates:
            if abs(candidate.duration_ms - track.duration_ms) > FUZZY_DURATION_TOLERANCE_MS:
                continue
            if not artists_match(candidate.artist, track.artist):
                continue
            return ProviderTrackHandle(
                provider=self.provider.name,
                track_id=candidate.track_id,
                isrc=candidate.isrc,
                duration_ms=candidate.duration_ms,
                strategy=STRATEGY_SEARCH,
            )
        
        return None
