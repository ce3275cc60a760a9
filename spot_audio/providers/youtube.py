"""
YouTube fallback audio source.

Used only after every lossless provider failed. The pipeline:
    1. Search YouTube Music (songs, then videos) for "{artist} - {title}"
    2. Score candidates and pick the best (first candidate wins ties)
    3. Resolve a direct audio stream URL with yt-dlp
    4. Reject the stream unless its host is on ALLOWED_AUDIO_HOSTS
    5. Download with a 60-second timeout; zero bytes is a failure

Scoring:
    +3  requested title is a substring of the candidate title
    +3  artist appears in the uploader, else +2 if it appears in the title
    +4  duration within 2s, +2 within 5s, -3 when off by more than 15s

Dependencies:
    - ytmusicapi: search (blocking, run in a worker thread)
    - yt-dlp: stream URL extraction (blocking, run in a worker thread)
"""

import asyncio
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError as YtDlpDownloadError
from ytmusicapi import YTMusic

from spot_audio.core.exceptions import ProviderError
from spot_audio.core.http import HttpClient
from spot_audio.core.logger import get_logger
from spot_audio.core.result import Failure, FailureReason, Ok, Result
from spot_audio.models import AudioResult, AudioSource, CanonicalTrack
from spot_audio.utils import is_allowed_host


logger = get_logger(__name__)

PROVIDER_NAME = AudioSource.YOUTUBE.value

# Stream hosts we are willing to download from
ALLOWED_AUDIO_HOSTS = (
    "googlevideo.com",
    "youtube.com",
    "pipedproxy.kavin.rocks",
    "pipedproxy.adminforge.de",
    "withmilo.xyz",
)

SEARCH_OPTIONS = [
    {"filter": "songs", "limit": 10},
    {"filter": "videos", "limit": 10},
]

DOWNLOAD_TIMEOUT_SECONDS = 60

WEBM_BITRATE_KBPS = 160
M4A_BITRATE_KBPS = 128

# Scoring
TITLE_MATCH_POINTS = 3
ARTIST_IN_UPLOADER_POINTS = 3
ARTIST_IN_TITLE_POINTS = 2
CLOSE_DURATION_SECONDS = 2
CLOSE_DURATION_POINTS = 4
NEAR_DURATION_SECONDS = 5
NEAR_DURATION_POINTS = 2
FAR_DURATION_SECONDS = 15
FAR_DURATION_PENALTY = -3


@dataclass(frozen=True)
class YouTubeCandidate:
    """One search hit."""
    video_id: str
    title: str
    uploader: str
    duration_seconds: int
    
    @property
    def url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"
    
    @classmethod
    def from_ytmusic_result(cls, result: dict[str, Any]) -> "YouTubeCandidate":
        artists = [
            a.get("name", "") for a in result.get("artists") or []
            if isinstance(a, dict) and a.get("name")
        ]
        duration = result.get("duration_seconds")
        if duration is None:
            duration = _parse_duration(result.get("duration"))
        return cls(
            video_id=result["videoId"],
            title=result.get("title", ""),
            uploader=", ".join(artists),
            duration_seconds=int(duration or 0),
        )


@dataclass(frozen=True)
class ResolvedStream:
    """A direct stream URL and the container yt-dlp picked."""
    url: str
    ext: str
    headers: dict[str, str]


def _parse_duration(duration_str: str | None) -> int:
    """'3:33' -> 213, '1:02:15' -> 3735, anything else -> 0."""
    if not duration_str:
        return 0
    try:
        seconds = 0
        for part in duration_str.split(":"):
            seconds = seconds * 60 + int(part)
        return seconds
    except ValueError:
        return 0


def is_allowed_stream_url(url: str) -> bool:
    """True if the stream host is an allow-listed domain or a sub-domain of one."""
    return is_allowed_host(url, ALLOWED_AUDIO_HOSTS)


def score_candidate(candidate: YouTubeCandidate, track: CanonicalTrack) -> int:
    """Score a search hit against the requested track."""
    score = 0
    title = candidate.title.lower()
    uploader = candidate.uploader.lower()
    wanted_title = track.name.lower()
    wanted_artist = track.artist.lower()
    
    if wanted_title and wanted_title in title:
        score += TITLE_MATCH_POINTS
    
    if wanted_artist and wanted_artist in uploader:
        score += ARTIST_IN_UPLOADER_POINTS
    elif wanted_artist and wanted_artist in title:
        score += ARTIST_IN_TITLE_POINTS
    
    if candidate.duration_seconds > 0:
        diff = abs(candidate.duration_seconds - track.duration_ms / 1000)
        if diff <= CLOSE_DURATION_SECONDS:
            score += CLOSE_DURATION_POINTS
        elif diff <= NEAR_DURATION_SECONDS:
            score += NEAR_DURATION_POINTS
        elif diff > FAR_DURATION_SECONDS:
            score += FAR_DURATION_PENALTY
    
    return score


def pick_best_candidate(
    candidates: list[YouTubeCandidate],
    track: CanonicalTrack
) -> YouTubeCandidate | None:
    """
    Highest-scoring candidate; the earliest one wins ties.
    
    The first result sets the baseline and is only replaced by a strictly
    higher score, so with all scores equal the first result is returned.
    """
    if not candidates:
        return None
    best = candidates[0]
    best_score = score_candidate(best, track)
    for candidate in candidates[1:]:
        score = score_candidate(candidate, track)
        if score > best_score:
            best, best_score = candidate, score
    return best


class YtDlpSilentLogger:
    """Keeps yt-dlp from printing to stderr; the last error is kept for our log."""
    
    def __init__(self) -> None:
        self.last_error: str | None = None
    
    def debug(self, msg: str) -> None:
        pass
    
    def info(self, msg: str) -> None:
        pass
    
    def warning(self, msg: str) -> None:
        pass
    
    def error(self, msg: str) -> None:
        self.last_error = msg


class YouTubeSearcher:
    """ytmusicapi wrapper returning de-duplicated candidates."""
    
    def __init__(self, ytmusic: YTMusic | None = None) -> None:
        self._ytmusic = ytmusic
    
    def _client(self) -> YTMusic:
        if self._ytmusic is None:
            self._ytmusic = YTMusic(language="en")
        return self._ytmusic
    
    async def search(self, query: str) -> list[YouTubeCandidate]:
        return await asyncio.to_thread(self._search_blocking, query)
    
    def _search_blocking(self, query: str) -> list[YouTubeCandidate]:
        candidates: list[YouTubeCandidate] = []
        seen_ids: set[str] = set()
        
        for options in SEARCH_OPTIONS:
            for raw in self._client().search(query, **options):
                video_id = raw.get("videoId")
                if not video_id or video_id in seen_ids:
                    continue
                seen_ids.add(video_id)
                candidates.append(YouTubeCandidate.from_ytmusic_result(raw))
        
        return candidates


class StreamResolver:
    """yt-dlp wrapper resolving a video to a direct audio URL."""
    
    def __init__(self, cookie_file: str | None = None) -> None:
        self.cookie_file = cookie_file
    
    def _options(self, yt_logger: YtDlpSilentLogger) -> dict[str, Any]:
        options: dict[str, Any] = {
            "format": "bestaudio[ext=webm]/bestaudio",
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "skip_download": True,
            "logger": yt_logger,
            "extractor_args": {
                "youtube": {
                    "player_client": ["web", "android", "default"],
                }
            },
        }
        if self.cookie_file is not None:
            options["cookiefile"] = self.cookie_file
        return options
    
    async def resolve(self, video_url: str) -> ResolvedStream | None:
        return await asyncio.to_thread(self._resolve_blocking, video_url)
    
    def _resolve_blocking(self, video_url: str) -> ResolvedStream | None:
        yt_logger = YtDlpSilentLogger()
        try:
            with YoutubeDL(self._options(yt_logger)) as ydl:
                info = ydl.extract_info(video_url, download=False)
        except YtDlpDownloadError as e:
            logger.debug(f"[youtube] yt-dlp could not resolve {video_url}: {yt_logger.last_error or e}")
            return None
        
        if not info or not info.get("url"):
            return None
        return ResolvedStream(
            url=info["url"],
            ext=info.get("ext") or "webm",
            headers=dict(info.get("http_headers") or {}),
        )


class YouTubeSource:
    """
    Fallback audio source backed by YouTube.
    
    attempt() never raises for expected failures; it returns a Failure with
    the reason the source could not serve the track.
    """
    
    name = PROVIDER_NAME
    
    def __init__(
        self,
        http: HttpClient,
        searcher: YouTubeSearcher | None = None,
        resolver: StreamResolver | None = None
    ) -> None:
        self.http = http
        self.searcher = searcher or YouTubeSearcher()
        self.resolver = resolver or StreamResolver()
    
    async def attempt(self, track: CanonicalTrack, prefer_lossless: bool = False) -> Result[AudioResult]:
        query = f"{track.artist} - {track.name}"
        candidates = await self.searcher.search(query)
        best = pick_best_candidate(candidates, track)
        if best is None:
            return Failure(FailureReason.IDENTITY_NOT_FOUND, f"no YouTube results for '{query}'")
        
        logger.debug(f"[youtube] selected {best.url} ({best.title})")
        
        stream = await self.resolver.resolve(best.url)
        if stream is None:
            return Failure(FailureReason.STREAM_UNAVAILABLE, f"no stream URL for {best.video_id}")
        
        if not is_allowed_stream_url(stream.url):
            host = urlparse(stream.url).hostname
            logger.warning(f"[youtube] rejected stream from non-allow-listed host: {host}")
            return Failure(FailureReason.HOST_NOT_ALLOWED, str(host))
        
        try:
            response = await self.http.request(
                "GET", stream.url, headers=stream.headers or None, timeout=DOWNLOAD_TIMEOUT_SECONDS
            )
        except ProviderError as e:
            return Failure(FailureReason.FETCH_FAILED, str(e))
        
        if not response.ok:
            return Failure(FailureReason.FETCH_FAILED, f"audio download failed: {response.status}")
        if not response.body:
            return Failure(FailureReason.EMPTY_PAYLOAD, "downloaded audio is empty")
        
        is_m4a = stream.ext == "m4a"
        return Ok(AudioResult(
            buffer=response.body,
            source=AudioSource.YOUTUBE,
            format="m4a" if is_m4a else "webm",
            bitrate=M4A_BITRATE_KBPS if is_m4a else WEBM_BITRATE_KBPS,
        ))
