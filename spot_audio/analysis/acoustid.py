"""
Acoustic fingerprint verification via Chromaprint (fpcalc) and AcoustID.

Used for the fallback source only, whose search-based matching is the
weakest identity signal. A fingerprint of the downloaded audio is looked
up on AcoustID, and the returned recordings are checked for title and
artist overlap with the requested track (case-insensitive substring in
either direction).

Verification never raises and never blocks the download: a missing API
key, a missing fpcalc binary, a network error or no overlapping recording
all produce VerificationResult.unverified(). The outcome depends only on
the buffer and the expected track.
"""

import json
from typing import Any

from spot_audio.core.exceptions import ExternalToolError, ProviderError
from spot_audio.core.http import HttpClient
from spot_audio.core.logger import get_logger
from spot_audio.core.process import run_tool, temporary_file
from spot_audio.models import CanonicalTrack, VerificationResult


logger = get_logger(__name__)

ACOUSTID_LOOKUP_URL = "https://api.acoustid.org/v2/lookup"
FPCALC_TIMEOUT_SECONDS = 15
LOOKUP_TIMEOUT_SECONDS = 10


def _overlaps(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return a in b or b in a


def match_recordings(data: dict[str, Any], track: CanonicalTrack) -> VerificationResult:
    """
    Find the first AcoustID recording that agrees with the expected track.
    
    Args:
        data: Parsed /v2/lookup response.
        track: The requested track.
    
    Returns:
        verified=True with the result's score as confidence on the first
        match, otherwise unverified.
    """
    if data.get("status") != "ok":
        return VerificationResult.unverified()
    
    expected_title = track.name.lower()
    expected_artist = track.artist.lower()
    
    for result in data.get("results") or []:
        for recording in result.get("recordings") or []:
            title = (recording.get("title") or "").lower()
            artist_names = [a.get("name", "") for a in recording.get("artists") or []]
            
            if not _overlaps(title, expected_title):
                continue
            if not any(_overlaps(name.lower(), expected_artist) for name in artist_names):
                continue
            
            return VerificationResult(
                verified=True,
                confidence=float(result.get("score") or 0),
                matched_title=recording.get("title"),
                matched_artist=", ".join(artist_names),
            )
    
    return VerificationResult.unverified()


class AcousticVerifier:
    """
    Fingerprint-and-lookup verifier.
    
    Args:
        http: Shared HTTP transport.
        api_key: AcoustID application key; None disables verification.
        fpcalc_binary: Path or name of the Chromaprint fpcalc binary.
    """
    
    def __init__(self, http: HttpClient, api_key: str | None, fpcalc_binary: str = "fpcalc") -> None:
        self.http = http
        self.api_key = api_key
        self.fpcalc_binary = fpcalc_binary
    
    async def verify(
        self,
        buffer: bytes,
        audio_format: str,
        track: CanonicalTrack
    ) -> VerificationResult:
        if not self.api_key:
            return VerificationResult.unverified()
        
        fingerprint = await self._fingerprint(buffer, audio_format)
        if fingerprint is None:
            return VerificationResult.unverified()
        fp, duration = fingerprint
        
        try:
            response = await self.http.request(
                "GET",
                ACOUSTID_LOOKUP_URL,
                params={
                    "client": self.api_key,
                    "fingerprint": fp,
                    "duration": str(round(duration)),
                    "meta": "recordings",
                },
                timeout=LOOKUP_TIMEOUT_SECONDS,
            )
        except ProviderError as e:
            logger.debug(f"AcoustID lookup failed: {e}")
            return VerificationResult.unverified()
        
        if not response.ok:
            logger.debug(f"AcoustID lookup returned {response.status}")
            return VerificationResult.unverified()
        
        try:
            return match_recordings(response.json(), track)
        except (ValueError, AttributeError, TypeError) as e:
            logger.debug(f"Malformed AcoustID response: {e}")
            return VerificationResult.unverified()
    
    async def _fingerprint(self, buffer: bytes, audio_format: str) -> tuple[str, float] | None:
        with temporary_file(buffer, suffix=f".{audio_format}") as path:
            try:
                output = await run_tool(
                    [self.fpcalc_binary, "-json", str(path)],
                    timeout=FPCALC_TIMEOUT_SECONDS,
                )
                data = json.loads(output.stdout)
            except (ExternalToolError, ValueError) as e:
                logger.debug(f"Fingerprinting failed: {e}")
                return None
        
        if not data.get("fingerprint") or not data.get("duration"):
            return None
        return data["fingerprint"], float(data["duration"])
