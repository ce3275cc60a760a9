"""
Pre-fetch match verification.

Gates network I/O: a provider track that fails this check is rejected
and its audio is never downloaded.
"""

from spot_audio.models import CanonicalTrack


# Maximum duration difference for a match without ISRC agreement
DURATION_TOLERANCE_MS = 3000


def verify_match(
    track: CanonicalTrack,
    provider_isrc: str | None,
    provider_duration_ms: int | None
) -> bool:
    """
    Decide whether a provider track is the requested recording.
    
    Args:
        track: The requested track.
        provider_isrc: ISRC reported by the provider, if any.
        provider_duration_ms: Duration reported by the provider, if any.
    
    Returns:
        True if the ISRCs match case-insensitively (conclusive regardless
        of duration), or if the durations differ by at most
        DURATION_TOLERANCE_MS. False when neither signal passes or no
        signal is available.
    """
    if track.isrc and provider_isrc and track.isrc.strip().upper() == provider_isrc.strip().upper():
        return True
    
    if provider_duration_ms is None or track.duration_ms <= 0:
        return False
    
    return abs(provider_duration_ms - track.duration_ms) <= DURATION_TOLERANCE_MS
