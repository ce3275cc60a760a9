"""
Measured audio quality via ffprobe.

Reports codec, bitrate, sample rate, channels, duration and bit depth,
and flags FLAC files whose bitrate is too low for genuine lossless audio
(a lossy source re-encoded into a lossless container).

Any failure (ffprobe missing, unreadable buffer) yields None. Analysis
only annotates a result; it never affects whether audio is returned.
"""

import json
from typing import Any

from spot_audio.core.exceptions import ExternalToolError
from spot_audio.core.logger import get_logger
from spot_audio.core.process import run_tool, temporary_file
from spot_audio.models import AudioQualityInfo


logger = get_logger(__name__)

FFPROBE_TIMEOUT_SECONDS = 10

# Genuine 44.1kHz stereo 16-bit FLAC is typically 700-1100 kbps
UPSCALE_MIN_FLAC_KBPS = 700
UPSCALE_MIN_SAMPLE_RATE = 44100
UPSCALE_MIN_CHANNELS = 2


def parse_probe_output(data: dict[str, Any]) -> AudioQualityInfo | None:
    """
    Build AudioQualityInfo from ffprobe's JSON output.
    
    Returns:
        None if the output has no audio stream.
    """
    audio_stream = next(
        (s for s in data.get("streams") or [] if s.get("codec_type") == "audio"),
        None
    )
    if audio_stream is None:
        return None
    
    container = data.get("format") or {}
    codec = audio_stream.get("codec_name") or "unknown"
    bitrate = int(audio_stream.get("bit_rate") or container.get("bit_rate") or 0)
    sample_rate = int(audio_stream.get("sample_rate") or 0)
    channels = int(audio_stream.get("channels") or 0)
    duration = float(audio_stream.get("duration") or container.get("duration") or 0)
    raw_depth = audio_stream.get("bits_per_raw_sample")
    bit_depth = int(raw_depth) if raw_depth else None
    
    is_upscaled = False
    upscale_reason = None
    if (
        codec == "flac"
        and bitrate > 0
        and sample_rate >= UPSCALE_MIN_SAMPLE_RATE
        and channels >= UPSCALE_MIN_CHANNELS
    ):
        kbps = bitrate / 1000
        if kbps < UPSCALE_MIN_FLAC_KBPS:
            is_upscaled = True
            upscale_reason = (
                f"FLAC bitrate {round(kbps)}kbps is below expected minimum "
                f"(~{UPSCALE_MIN_FLAC_KBPS}kbps for 44.1kHz stereo)"
            )
    
    return AudioQualityInfo(
        codec=codec,
        bitrate=bitrate,
        sample_rate=sample_rate,
        channels=channels,
        duration=duration,
        bit_depth=bit_depth,
        is_upscaled=is_upscaled,
        upscale_reason=upscale_reason,
    )


class QualityAnalyzer:
    """Runs ffprobe on an in-memory buffer."""
    
    def __init__(self, ffprobe_binary: str = "ffprobe") -> None:
        self.ffprobe_binary = ffprobe_binary
    
    async def analyze(self, buffer: bytes, audio_format: str) -> AudioQualityInfo | None:
        with temporary_file(buffer, suffix=f".{audio_format}") as path:
            try:
                output = await run_tool(
                    [
                        self.ffprobe_binary,
                        "-v", "quiet",
                        "-print_format", "json",
                        "-show_streams",
                        "-show_format",
                        str(path),
                    ],
                    timeout=FFPROBE_TIMEOUT_SECONDS,
                )
                return parse_probe_output(json.loads(output.stdout))
            except (ExternalToolError, ValueError) as e:
                logger.debug(f"Quality analysis failed: {e}")
                return None
