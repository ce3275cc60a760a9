"""Post-fetch audio analysis: measured quality and acoustic verification."""

from spot_audio.analysis.acoustid import AcousticVerifier, match_recordings
from spot_audio.analysis.probe import QualityAnalyzer, parse_probe_output

__all__ = [
    "AcousticVerifier",
    "match_recordings",
    "QualityAnalyzer",
    "parse_probe_output",
]
