"""
ffmpeg transcoding and tag embedding.

Turns an AudioResult into the requested output container:
    - mp3:  libmp3lame 320k, ID3v2.3 tags
    - flac: stream copy when the source is already FLAC
    - alac: Apple Lossless in an .m4a container

Lossless output is only produced when the acquired audio is itself
lossless; anything else is encoded to mp3 regardless of the request.

Every ffmpeg run goes through a shared ConcurrencyLimiter. A failed run is
retried once with a minimal argument list (no cover, no tags). If that
also fails, the raw acquired buffer is returned under its own extension
so the caller still gets playable audio.
"""

import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from spot_audio.core.exceptions import ExternalToolError, TranscodeError
from spot_audio.core.limiter import ConcurrencyLimiter
from spot_audio.core.logger import get_logger
from spot_audio.core.process import run_tool
from spot_audio.models import AudioQualityInfo, AudioResult, CanonicalTrack
from spot_audio.utils import build_track_filename


logger = get_logger(__name__)


DEFAULT_TIMEOUT_SECONDS = 120
DEFAULT_MAX_OUTPUT_BYTES = 50 * 1024 * 1024
MP3_BITRATE = "320k"

# Reported in the lossless comment when ffprobe could not measure them
DEFAULT_BIT_DEPTH = 16
DEFAULT_SAMPLE_RATE = 44100


class OutputFormat(str, Enum):
    """Container/codec combinations the transcoder can produce."""
    MP3 = "mp3"
    FLAC = "flac"
    ALAC = "alac"

    @property
    def extension(self) -> str:
        return "m4a" if self is OutputFormat.ALAC else self.value

    @property
    def is_lossless(self) -> bool:
        return self is not OutputFormat.MP3


@dataclass(frozen=True)
class TranscodeOutput:
    """
    A finished file ready to be written or streamed.

    Attributes:
        filename: '{artist} - {title}.{extension}', sanitized.
        buffer: File contents.
        extension: File extension without dot.
        output_format: Format produced by ffmpeg, or None when the raw
                       source buffer was returned after both runs failed.
    """
    filename: str
    buffer: bytes
    extension: str
    output_format: OutputFormat | None


def resolve_output_format(requested: OutputFormat, audio: AudioResult) -> OutputFormat:
    """
    Downgrade a lossless request to mp3 unless the source is lossless.

    Transcoding lossy audio into a lossless container only inflates the
    file, so flac/alac are honoured only for FLAC sources.
    """
    if requested.is_lossless and audio.is_lossless:
        return requested
    return OutputFormat.MP3


def build_metadata_tags(
    track: CanonicalTrack,
    output_format: OutputFormat,
    quality_info: AudioQualityInfo | None = None,
    lyrics: str | None = None
) -> list[tuple[str, str]]:
    """
    Build the ordered (key, value) tag list passed to ffmpeg -metadata.

    ID3 has no ISRC alias in ffmpeg, so mp3 output gets the raw TSRC frame
    name. Lossless outputs carry a comment describing the stream.
    """
    tags = [
        ("title", track.name),
        ("artist", track.artist),
        ("album", track.album),
    ]
    if track.album_artist:
        tags.append(("album_artist", track.album_artist))
    if track.genre:
        tags.append(("genre", track.genre))
    if track.release_date:
        tags.append(("date", track.release_date))
    if track.track_number is not None:
        track_tag = str(track.track_number)
        if track.total_tracks:
            track_tag = f"{track.track_number}/{track.total_tracks}"
        tags.append(("track", track_tag))
    if track.disc_number is not None:
        tags.append(("disc", str(track.disc_number)))
    if track.isrc:
        isrc_key = "ISRC" if output_format.is_lossless else "TSRC"
        tags.append((isrc_key, track.isrc))
    if track.label:
        tags.append(("label", track.label))
    if track.copyright_text:
        tags.append(("copyright", track.copyright_text))
    if lyrics:
        tags.append(("lyrics", lyrics))
    if output_format.is_lossless:
        bit_depth = DEFAULT_BIT_DEPTH
        sample_rate = DEFAULT_SAMPLE_RATE
        if quality_info is not None:
            bit_depth = quality_info.bit_depth or DEFAULT_BIT_DEPTH
            sample_rate = quality_info.sample_rate or DEFAULT_SAMPLE_RATE
        codec = output_format.value.upper()
        tags.append((
            "comment",
            f"Lossless ({codec} {bit_depth}-bit/{sample_rate / 1000:.1f}kHz)",
        ))
    return tags


def build_ffmpeg_args(
    input_path: Path,
    output_path: Path,
    output_format: OutputFormat,
    source_format: str,
    tags: list[tuple[str, str]],
    art_path: Path | None = None,
    ffmpeg_binary: str = "ffmpeg"
) -> list[str]:
    """
    Build the full ffmpeg command line, cover art and tags included.

    When art_path is given the image is mapped as a second stream and
    marked as the attached picture.
    """
    args = [ffmpeg_binary, "-i", str(input_path)]
    if art_path is not None:
        args += ["-i", str(art_path), "-map", "0:a", "-map", "1:0"]

    if output_format is OutputFormat.ALAC:
        args += ["-c:a", "alac"]
        if art_path is not None:
            args += ["-c:v", "copy", "-disposition:v", "attached_pic"]
    elif output_format is OutputFormat.FLAC:
        args += ["-c:a", "copy" if source_format == "flac" else "flac"]
        if art_path is not None:
            args += ["-c:v", "copy", "-disposition:v", "attached_pic"]
    else:
        args += ["-c:a", "libmp3lame", "-b:a", MP3_BITRATE]
        if art_path is not None:
            args += [
                "-c:v", "copy",
                "-id3v2_version", "3",
                "-metadata:s:v", "title=Album cover",
                "-metadata:s:v", "comment=Cover (front)",
                "-disposition:v", "attached_pic",
            ]
        else:
            args += ["-id3v2_version", "3"]

    for key, value in tags:
        args += ["-metadata", f"{key}={value}"]

    args += ["-y", str(output_path)]
    return args


def build_minimal_args(
    input_path: Path,
    output_path: Path,
    output_format: OutputFormat,
    ffmpeg_binary: str = "ffmpeg"
) -> list[str]:
    """Bare re-encode used as the single retry: no cover, no tags."""
    if output_format is OutputFormat.ALAC:
        codec = ["-c:a", "alac"]
    elif output_format is OutputFormat.FLAC:
        codec = ["-c:a", "flac"]
    else:
        codec = ["-c:a", "libmp3lame", "-b:a", MP3_BITRATE]
    return [ffmpeg_binary, "-y", "-i", str(input_path), *codec, str(output_path)]


class Transcoder:
    """
    Runs ffmpeg for finished tracks under a shared concurrency limit.

    Attributes:
        limiter: FIFO limiter bounding concurrent ffmpeg processes.
        timeout: Seconds allowed per ffmpeg run.
        max_output_bytes: Largest output file accepted.

    Example:
        transcoder = Transcoder(ConcurrencyLimiter(4))
        output = await transcoder.transcode(audio, track, OutputFormat.MP3, cover)
    """

    def __init__(
        self,
        limiter: ConcurrencyLimiter,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        ffmpeg_binary: str = "ffmpeg"
    ) -> None:
        self.limiter = limiter
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.ffmpeg_binary = ffmpeg_binary

    async def transcode(
        self,
        audio: AudioResult,
        track: CanonicalTrack,
        requested: OutputFormat,
        cover_art: bytes | None = None,
        lyrics: str | None = None
    ) -> TranscodeOutput:
        """
        Encode audio into the requested format with tags and cover art.

        Args:
            audio: Acquired audio.
            track: Metadata to embed.
            requested: Format asked for by the user.
            cover_art: JPEG/PNG bytes to attach, if any.
            lyrics: Plain lyrics text to embed, if any.

        Returns:
            TranscodeOutput. Never raises for ffmpeg failures: after the
            retry fails the raw source buffer is returned instead.
        """
        output_format = resolve_output_format(requested, audio)
        if output_format is not requested:
            logger.info(
                f"{track.display_name}: {audio.source.value} served {audio.format}, "
                f"writing {output_format.value} instead of {requested.value}"
            )

        with tempfile.TemporaryDirectory(prefix="spot-audio-") as temp_dir:
            work_dir = Path(temp_dir)
            input_path = work_dir / f"input.{audio.format}"
            output_path = work_dir / f"output.{output_format.extension}"
            input_path.write_bytes(audio.buffer)

            art_path = None
            if cover_art:
                art_path = work_dir / "cover.jpg"
                art_path.write_bytes(cover_art)

            tags = build_metadata_tags(track, output_format, audio.quality_info, lyrics)
            full_args = build_ffmpeg_args(
                input_path, output_path, output_format, audio.format,
                tags, art_path, self.ffmpeg_binary,
            )

            try:
                buffer = await self._run(full_args, output_path)
            except TranscodeError as e:
                logger.warning(f"{track.display_name}: ffmpeg failed, retrying without tags: {e}")
                minimal_args = build_minimal_args(
                    input_path, output_path, output_format, self.ffmpeg_binary
                )
                try:
                    buffer = await self._run(minimal_args, output_path)
                except TranscodeError as retry_error:
                    logger.error(
                        f"{track.display_name}: ffmpeg retry failed, "
                        f"returning raw {audio.format}: {retry_error}"
                    )
                    return TranscodeOutput(
                        filename=build_track_filename(track.artist, track.name, audio.format),
                        buffer=audio.buffer,
                        extension=audio.format,
                        output_format=None,
                    )

        return TranscodeOutput(
            filename=build_track_filename(track.artist, track.name, output_format.extension),
            buffer=buffer,
            extension=output_format.extension,
            output_format=output_format,
        )

    async def _run(self, args: list[str], output_path: Path) -> bytes:
        """Run one ffmpeg invocation and return the output file's bytes."""
        output_path.unlink(missing_ok=True)
        try:
            async with self.limiter:
                await run_tool(args, timeout=self.timeout)
        except ExternalToolError as e:
            raise TranscodeError(str(e), details=e.details) from e

        if not output_path.exists():
            raise TranscodeError("ffmpeg produced no output file")
        size = output_path.stat().st_size
        if size == 0:
            raise TranscodeError("ffmpeg produced an empty file")
        if size > self.max_output_bytes:
            raise TranscodeError(
                f"Output of {size} bytes exceeds the {self.max_output_bytes} byte limit"
            )
        return output_path.read_bytes()
