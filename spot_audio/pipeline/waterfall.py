"""
Waterfall orchestration across audio sources.

The control flow is a small explicit state machine:

    TRYING_PRIMARY(0) -> TRYING_PRIMARY(1) -> ... -> TRYING_FALLBACK
          |                    |                          |
          +------ success -----+---------> SUCCEEDED      +--> EXHAUSTED

Primary sources (lossless-capable) are tried in order. Any failure at any
stage abandons that source silently (logged) and moves on. A primary
success never triggers the fallback. When everything fails, a single
AudioUnavailableError is raised; it is the only exception that leaves
fetch_best_audio().

After success, enrichment runs as independent tasks joined with
asyncio.gather(return_exceptions=True):
    - quality analysis, always
    - acoustic verification, only for the fallback source
A failed enrichment task leaves its field unset, except that a fallback
result always carries a VerificationResult (unverified on failure).
"""

import asyncio
import dataclasses
from dataclasses import dataclass
from enum import Enum, auto
from typing import Protocol, Sequence

from spot_audio.core.exceptions import AudioUnavailableError
from spot_audio.core.logger import get_logger
from spot_audio.core.result import Failure, FailureReason, Result
from spot_audio.models import (
    AudioQualityInfo,
    AudioResult,
    CanonicalTrack,
    VerificationResult,
)


logger = get_logger(__name__)


class AudioSourceProtocol(Protocol):
    name: str
    
    async def attempt(self, track: CanonicalTrack, prefer_lossless: bool) -> Result[AudioResult]:
        ...


class QualityAnalyzerProtocol(Protocol):
    async def analyze(self, buffer: bytes, audio_format: str) -> AudioQualityInfo | None:
        ...


class AcousticVerifierProtocol(Protocol):
    async def verify(
        self,
        buffer: bytes,
        audio_format: str,
        track: CanonicalTrack
    ) -> VerificationResult:
        ...


# =============================================================================
# STATE MACHINE
# =============================================================================

class WaterfallState(Enum):
    TRYING_PRIMARY = auto()
    TRYING_FALLBACK = auto()
    SUCCEEDED = auto()
    EXHAUSTED = auto()


@dataclass(frozen=True)
class WaterfallStep:
    """Current state plus the index of the primary source being tried."""
    state: WaterfallState
    primary_index: int = 0
    
    @property
    def is_terminal(self) -> bool:
        return self.state in (WaterfallState.SUCCEEDED, WaterfallState.EXHAUSTED)


def start(primary_count: int) -> WaterfallStep:
    """Initial step: the first primary source, or straight to the fallback."""
    if primary_count > 0:
        return WaterfallStep(WaterfallState.TRYING_PRIMARY, 0)
    return WaterfallStep(WaterfallState.TRYING_FALLBACK)


def advance(step: WaterfallStep, succeeded: bool, primary_count: int) -> WaterfallStep:
    """
    Transition after an attempt.
    
    Terminal steps are returned unchanged.
    """
    if step.is_terminal:
        return step
    
    if succeeded:
        return WaterfallStep(WaterfallState.SUCCEEDED, step.primary_index)
    
    if step.state is WaterfallState.TRYING_PRIMARY:
        next_index = step.primary_index + 1
        if next_index < primary_count:
            return WaterfallStep(WaterfallState.TRYING_PRIMARY, next_index)
        return WaterfallStep(WaterfallState.TRYING_FALLBACK, step.primary_index)
    
    return WaterfallStep(WaterfallState.EXHAUSTED, step.primary_index)


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class AudioFetcher:
    """
    Runs the waterfall for one track at a time; safe to share across
    concurrent tracks.
    
    Args:
        primary_sources: Lossless-capable sources, in preference order.
        fallback_source: Last-resort source; its results are acoustically verified.
        analyzer: Quality analyzer applied to every successful result.
        verifier: Acoustic verifier applied to fallback results.
    
    Example:
        fetcher = AudioFetcher([tidal, deezer], youtube, QualityAnalyzer(), verifier)
        audio = await fetcher.fetch_best_audio(track, prefer_lossless=True)
    """
    
    def __init__(
        self,
        primary_sources: Sequence[AudioSourceProtocol],
        fallback_source: AudioSourceProtocol,
        analyzer: QualityAnalyzerProtocol,
        verifier: AcousticVerifierProtocol
    ) -> None:
        self.primary_sources = list(primary_sources)
        self.fallback_source = fallback_source
        self.analyzer = analyzer
        self.verifier = verifier
    
    async def fetch_best_audio(self, track: CanonicalTrack, prefer_lossless: bool = False) -> AudioResult:
        """
        Acquire audio for a track.
        
        Raises:
            AudioUnavailableError: Every source failed.
        """
        primary_count = len(self.primary_sources)
        step = start(primary_count)
        failures: dict[str, str] = {}
        result: AudioResult | None = None
        served_by: AudioSourceProtocol | None = None
        
        while not step.is_terminal:
            if step.state is WaterfallState.TRYING_PRIMARY:
                source = self.primary_sources[step.primary_index]
            else:
                source = self.fallback_source
            
            outcome = await self._attempt(source, track, prefer_lossless)
            if isinstance(outcome, Failure):
                failures[source.name] = str(outcome)
                logger.info(f"[{source.name}] skipped for {track.display_name}: {outcome}")
            else:
                result = outcome.value
                served_by = source
            
            step = advance(step, succeeded=result is not None, primary_count=primary_count)
        
        if result is None:
            raise AudioUnavailableError(track.name, track.artist, details={"failures": failures})
        
        return await self._enrich(result, track, is_fallback=served_by is self.fallback_source)
    
    async def _attempt(
        self,
        source: AudioSourceProtocol,
        track: CanonicalTrack,
        prefer_lossless: bool
    ) -> Result[AudioResult]:
        try:
            return await source.attempt(track, prefer_lossless)
        except Exception as e:
            logger.warning(f"[{source.name}] unexpected error for {track.display_name}: {e}", exc_info=True)
            return Failure(FailureReason.UNEXPECTED, str(e))
    
    async def _enrich(self, result: AudioResult, track: CanonicalTrack, is_fallback: bool) -> AudioResult:
        tasks = [self.analyzer.analyze(result.buffer, result.format)]
        if is_fallback:
            tasks.append(self.verifier.verify(result.buffer, result.format, track))
        
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        
        quality = outcomes[0]
        if isinstance(quality, BaseException):
            logger.debug(f"Quality analysis raised: {quality}")
            quality = None
        
        verification = None
        if is_fallback:
            verification = outcomes[1]
            if isinstance(verification, BaseException):
                logger.debug(f"Acoustic verification raised: {verification}")
                verification = VerificationResult.unverified()
        
        return dataclasses.replace(result, quality_info=quality, verification=verification)
