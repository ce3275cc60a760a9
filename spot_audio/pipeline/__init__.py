"""Acquisition waterfall and end-to-end track processing."""

from spot_audio.pipeline.process import ProcessedTrack, TrackProcessor, build_audio_fetcher
from spot_audio.pipeline.waterfall import AudioFetcher, WaterfallState

__all__ = [
    "AudioFetcher",
    "WaterfallState",
    "ProcessedTrack",
    "TrackProcessor",
    "build_audio_fetcher",
]
