"""
Command-line interface for spot-audio.

This module implements the CLI using Click, with rich-click for colored
help and errors. It resolves the requested tracks, runs them through the
acquisition pipeline in batches and writes the finished files.

Commands:
    spot-audio --url <track_url> [--url ...]    Fetch Spotify tracks
    spot-audio --title T --artist A --duration-ms N [--isrc I]
                                                Fetch a track described by hand

Options:
    --format mp3|flac|alac      Output format (default from config)
    --output <dir>              Output directory (overrides config)
    --config <config.yaml>      Explicit configuration file
    --concurrency <n>           Tracks processed per batch (default 5)

Usage:
    # Hi-res FLAC from a Spotify URL
    spot-audio --url "https://open.spotify.com/track/..." --format flac

    # Several tracks, mp3 output
    spot-audio --url "https://..." --url "https://..." --format mp3

    # No Spotify credentials needed for manual metadata
    spot-audio --title "Song" --artist "Artist" --duration-ms 215000 --isrc USRC17607839

Exit Codes:
    0   At least one track was written
    1   Configuration error, bad arguments or every track failed
    3   Metadata could not be resolved for any track
    4   Other spot-audio error
    130 Interrupted by user
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import rich_click as click
from tqdm import tqdm

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.OPTION_GROUPS = {
    "cli": [
        {
            "name": "Input Sources",
            "options": ["--url", "--title", "--artist", "--album", "--duration-ms", "--isrc"],
        },
        {
            "name": "Output Options",
            "options": ["--format", "--output", "--concurrency"],
        },
        {
            "name": "Advanced Options",
            "options": ["--config", "--verbose"],
        },
        {
            "name": "Info",
            "options": ["--version", "--help"],
        },
    ],
}

from spot_audio import __version__
from spot_audio.core import (
    AudioUnavailableError,
    Config,
    ConfigError,
    HttpClient,
    MetadataError,
    SpotAudioError,
    get_logger,
    load_config,
    log_fetch_failure,
    setup_logging,
    shutdown_logging,
)
from spot_audio.core.logger import format_source_message
from spot_audio.models import CanonicalTrack
from spot_audio.pipeline import ProcessedTrack, TrackProcessor
from spot_audio.spotify import SpotifyMetadataResolver
from spot_audio.transcode import OutputFormat
from spot_audio.utils import chunked, ensure_directory

logger = get_logger(__name__)


DEFAULT_CONCURRENCY = 5


@click.command()
@click.option(
    "--url", "urls",
    type=str,
    multiple=True,
    metavar="<spotify-url>",
    help="Spotify track URL (repeatable)"
)
@click.option("--title", type=str, default=None, help="Track title (manual metadata)")
@click.option("--artist", type=str, default=None, help="Primary artist (manual metadata)")
@click.option("--album", type=str, default="", help="Album name (manual metadata)")
@click.option(
    "--duration-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Track duration in milliseconds (manual metadata)"
)
@click.option("--isrc", type=str, default=None, help="ISRC code (manual metadata)")
@click.option(
    "--format", "output_format",
    type=click.Choice([fmt.value for fmt in OutputFormat], case_sensitive=False),
    default=None,
    help="Output format [default: flac if output.prefer_lossless, else mp3]"
)
@click.option(
    "--output",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    metavar="<dir>",
    help="Output directory (overrides config)"
)
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file [default: ./config.yaml]"
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=DEFAULT_CONCURRENCY,
    show_default=True,
    help="Tracks processed per batch"
)
@click.option("--verbose", is_flag=True, help="Show debug output on the console")
@click.version_option(__version__, "--version", prog_name="spot-audio")
def cli(
    urls: tuple[str, ...],
    title: Optional[str],
    artist: Optional[str],
    album: str,
    duration_ms: Optional[int],
    isrc: Optional[str],
    output_format: Optional[str],
    output: Optional[Path],
    config_path: Optional[Path],
    concurrency: int,
    verbose: bool
) -> None:
    """
    spot-audio: fetch verified, high-quality audio for Spotify tracks.

    Tries Tidal (hi-res FLAC), then Deezer (FLAC/MP3), then YouTube Music.
    Provider matches are checked by ISRC or duration before download;
    YouTube results are verified by acoustic fingerprint.

    \b
    BASIC USAGE:
        spot-audio --url "https://open.spotify.com/track/..."
        spot-audio --url "https://..." --format alac

    \b
    MANUAL METADATA:
        spot-audio --title "Song" --artist "Artist" --duration-ms 215000
    """
    manual = any([title, artist, duration_ms, isrc])
    if urls and manual:
        raise click.UsageError("Use either --url or manual metadata, not both.")
    if not urls and not (title and artist and duration_ms):
        raise click.UsageError(
            "Provide --url, or --title, --artist and --duration-ms."
        )

    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    output_dir = ensure_directory(output or config.output.directory)
    setup_logging(output_dir, verbose=verbose)

    if output_format is not None:
        requested = OutputFormat(output_format.lower())
    elif config.output.prefer_lossless:
        requested = OutputFormat.FLAC
    else:
        requested = OutputFormat.MP3

    manual_track = None
    if not urls:
        manual_track = CanonicalTrack(
            name=title,
            artist=artist,
            album=album,
            duration_ms=duration_ms,
            isrc=isrc or None,
        )

    try:
        logger.info(f"spot-audio {__version__}: writing {requested.value} to {output_dir}")
        succeeded, failed = asyncio.run(
            _run(config, list(urls), manual_track, requested, output_dir, concurrency)
        )
        _print_final_stats(succeeded, failed)

        if succeeded == 0:
            sys.exit(3 if failed == 0 else 1)

    except MetadataError as e:
        click.echo(f"Metadata error: {e.message}", err=True)
        logger.error(f"Metadata error: {e.message}", exc_info=True)
        sys.exit(3)

    except SpotAudioError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(4)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)

    finally:
        shutdown_logging()


async def _run(
    config: Config,
    urls: list[str],
    manual_track: CanonicalTrack | None,
    requested: OutputFormat,
    output_dir: Path,
    concurrency: int
) -> tuple[int, int]:
    """
    Resolve tracks, process them in batches and write the results.

    Returns:
        (succeeded, failed) track counts.
    """
    tracks: list[CanonicalTrack] = []
    failed = 0

    if manual_track is not None:
        tracks.append(manual_track)
    else:
        resolver = SpotifyMetadataResolver(config.spotify.client_id, config.spotify.client_secret)
        for url in urls:
            try:
                tracks.append(await resolver.resolve(url))
            except MetadataError as e:
                log_fetch_failure(logger, url, "Unknown Artist", url, e.message)
                failed += 1

    if not tracks:
        if failed:
            raise MetadataError("No track metadata could be resolved", details={"urls": urls})
        return 0, 0

    succeeded = 0
    written: set[Path] = set()
    async with HttpClient() as http:
        processor = TrackProcessor.from_config(config, http)

        with tqdm(total=len(tracks), desc="Fetching", unit="track") as progress:
            for batch in chunked(tracks, concurrency):
                outcomes = await asyncio.gather(
                    *(processor.process_track(track, requested) for track in batch),
                    return_exceptions=True,
                )
                for track, outcome in zip(batch, outcomes):
                    if isinstance(outcome, BaseException):
                        _report_failure(track, outcome)
                        failed += 1
                    else:
                        try:
                            _write_output(outcome, output_dir, written)
                        except OSError as e:
                            log_fetch_failure(
                                logger, track.name, track.artist, track.spotify_url,
                                f"Could not write file: {e}",
                            )
                            failed += 1
                        else:
                            succeeded += 1
                    progress.update(1)

    return succeeded, failed


def unique_output_path(output_dir: Path, filename: str, taken: set[Path]) -> Path:
    """
    Reserve a file path not yet written in this run.

    A repeated name gets a counter before the extension:
    "Artist - Song.flac", "Artist - Song (2).flac", ...
    """
    path = output_dir / filename
    counter = 2
    while path in taken:
        path = output_dir / f"{Path(filename).stem} ({counter}){Path(filename).suffix}"
        counter += 1
    taken.add(path)
    return path


def _write_output(processed: ProcessedTrack, output_dir: Path, taken: set[Path]) -> Path:
    """Write a finished track and log where it came from."""
    path = unique_output_path(output_dir, processed.filename, taken)
    if path.name != processed.filename:
        logger.warning(f"{processed.filename} already written in this run, saving as {path.name}")
    path.write_bytes(processed.buffer)

    audio = processed.audio
    detail = audio.tier.value if audio.tier else f"{audio.format} {audio.bitrate}kbps"
    if audio.verification is not None:
        state = "verified" if audio.verification.verified else "unverified"
        detail += f", {state}"
    if audio.quality_info is not None and audio.quality_info.is_upscaled:
        logger.warning(f"{processed.track.display_name}: {audio.quality_info.upscale_reason}")

    logger.info(format_source_message(
        processed.track.artist, processed.track.name, audio.source.value, detail
    ))
    logger.debug(f"Wrote {path}")
    return path


def _report_failure(track: CanonicalTrack, error: BaseException) -> None:
    if isinstance(error, AudioUnavailableError):
        failures = error.details.get("failures", {})
        summary = "; ".join(f"{source}: {reason}" for source, reason in failures.items())
        message = f"{error.message} [{summary}]" if summary else error.message
    elif isinstance(error, SpotAudioError):
        message = error.message
    else:
        logger.debug(f"Unexpected error for {track.display_name}", exc_info=error)
        message = f"Unexpected error: {error}"
    log_fetch_failure(logger, track.name, track.artist, track.spotify_url, message)


def _print_final_stats(succeeded: int, failed: int) -> None:
    logger.info("=" * 60)
    logger.info("FINAL STATISTICS")
    logger.info("=" * 60)
    logger.info(f"Fetched:           {succeeded}")
    logger.info(f"Failed:            {failed}")
    logger.info("=" * 60)


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `spot-audio` from the command line.
    """
    cli()


if __name__ == "__main__":
    main()
