"""
Logging setup for spot-audio.

Each run writes to the console and to three files in <output>/logs:
    - log_full_<ts>.log: every record, DEBUG and above
    - log_errors_<ts>.log: ERROR and above
    - fetch_failures_<ts>.log: one block per track no source could serve

Sources give up quietly and the waterfall moves on, so these logs are the
only trace of a skipped provider or a rejected match. Provider modules
prefix their records with the source tag, e.g. "[deezer] ...".

Usage:
    from spot_audio.core.logger import setup_logging, get_logger

    setup_logging(output_dir)
    logger = get_logger(__name__)
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Record attribute carrying a failed track for the failures report
FAILURE_ATTR = "fetch_failure"

# Third-party loggers that are too chatty at DEBUG
QUIET_LOGGERS = ("aiohttp", "asyncio", "spotipy", "urllib3", "yt_dlp")

RESET = "\033[0m"
GREEN = "\033[32m"
CYAN = "\033[36m"
RED = "\033[31m"

LEVEL_COLORS = {
    logging.DEBUG: "\033[34m",
    logging.INFO: GREEN,
    logging.WARNING: "\033[33m",
    logging.ERROR: RED,
    logging.CRITICAL: "\033[1m" + RED,
}


class ConsoleFormatter(logging.Formatter):
    """
    Colored "LEVEL: message" lines.

    With verbose set, the short module name is shown too, so DEBUG output
    from the providers can be told apart.
    """

    def __init__(self, verbose: bool = False) -> None:
        super().__init__()
        self.verbose = verbose

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno, "")
        line = f"{color}{record.levelname}{RESET}: "
        if self.verbose:
            line += f"{record.name.rsplit('.', 1)[-1]}: "
        line += record.getMessage()
        if record.exc_info and self.verbose:
            line += "\n" + self.formatException(record.exc_info)
        return line


class TqdmLoggingHandler(logging.Handler):
    """Writes above the active progress bar through tqdm.write()."""

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=self.stream)
        except Exception:
            self.handleError(record)


class FailureRecordFilter(logging.Filter):
    """Passes only records logged through log_fetch_failure()."""

    def filter(self, record: logging.LogRecord) -> bool:
        return hasattr(record, FAILURE_ATTR)


class FailureReportFormatter(logging.Formatter):
    """
    Renders a failed track as a readable block:

        Artist - Title
        https://open.spotify.com/track/...
        Could not find audio for ...
    """

    def format(self, record: logging.LogRecord) -> str:
        failure = getattr(record, FAILURE_ATTR)
        lines = [f"{failure['artist']} - {failure['track_name']}"]
        if failure["source_url"]:
            lines.append(failure["source_url"])
        lines.append(failure["reason"])
        return "\n".join(lines) + "\n"


def _file_handler(path: Path, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    return handler


def setup_logging(output_dir: Path, verbose: bool = False) -> None:
    """
    Configure the root logger. Call once per run, after config is loaded.

    Handlers left over from an earlier call are closed first.

    Args:
        output_dir: Output directory; logs go to its 'logs' subdirectory.
        verbose: Show DEBUG records and tracebacks on the console.
    """
    logs_dir = output_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    shutdown_logging()
    root_logger.setLevel(logging.DEBUG)

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ConsoleFormatter(verbose))
    root_logger.addHandler(console_handler)

    root_logger.addHandler(_file_handler(logs_dir / f"log_full_{timestamp}.log", logging.DEBUG))
    root_logger.addHandler(_file_handler(logs_dir / f"log_errors_{timestamp}.log", logging.ERROR))

    failures_handler = logging.FileHandler(
        logs_dir / f"fetch_failures_{timestamp}.log", mode="w", encoding="utf-8", delay=True
    )
    failures_handler.addFilter(FailureRecordFilter())
    failures_handler.setFormatter(FailureReportFormatter())
    root_logger.addHandler(failures_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass __name__."""
    return logging.getLogger(name)


def format_source_message(artist: str, name: str, source: str, detail: str) -> str:
    """Colored 'Fetched: Artist - Title from source (detail)' line."""
    return f"{GREEN}Fetched{RESET}: {artist} - {name} from {CYAN}{source}{RESET} ({detail})"


def log_fetch_failure(
    logger: logging.Logger,
    track_name: str,
    artist: str,
    source_url: str,
    error_message: str
) -> None:
    """
    Log a track no source could serve.

    The record goes to the console and both log files as an ERROR, and
    to the failures report as a block.
    """
    logger.error(
        f"{RED}Failed{RESET}: {artist} - {track_name}: {error_message}",
        extra={
            FAILURE_ATTR: {
                "track_name": track_name,
                "artist": artist,
                "source_url": source_url,
                "reason": error_message,
            }
        }
    )


def shutdown_logging() -> None:
    """Flush, close and detach every root handler."""
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        handler.flush()
        handler.close()
        root_logger.removeHandler(handler)
