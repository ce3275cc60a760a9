"""Test the track processor"""

import dataclasses
from unittest.mock import patch

import pytest

from spot_audio.core.config import load_config
from spot_audio.core.exceptions import AudioUnavailableError, ProviderError
from spot_audio.core.http import HttpResponse
from spot_audio.models import AudioResult, AudioSource
from spot_audio.pipeline import TrackProcessor, build_audio_fetcher
from spot_audio.tagging import CatalogIds
from spot_audio.transcode import OutputFormat, TranscodeOutput


class FakeFetcher:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    async def fetch_best_audio(self, track, prefer_lossless=False):
        self.calls.append(prefer_lossless)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeTranscoder:
    def __init__(self, output_format):
        self.output_format = output_format
        self.calls = []

    async def transcode(self, audio, track, requested, cover_art=None, lyrics=None):
        self.calls.append({"requested": requested, "cover_art": cover_art, "lyrics": lyrics})
        extension = self.output_format.extension if self.output_format else audio.format
        return TranscodeOutput(
            filename=f"out.{extension}", buffer=b"encoded", extension=extension,
            output_format=self.output_format,
        )


AUDIO = AudioResult(buffer=b"flac-data", source=AudioSource.TIDAL, format="flac", bitrate=0)


class TestTrackProcessor:
    """Test acquisition, cover art and tagging"""

    @pytest.mark.asyncio
    async def test_process_track(self, fake_http, sample_track):
        fake_http.add("GET", "https://i.scdn.co/", HttpResponse(status=200, body=b"jpeg"))
        fetcher = FakeFetcher(AUDIO)
        transcoder = FakeTranscoder(OutputFormat.FLAC)
        processor = TrackProcessor(fetcher, transcoder, fake_http)

        result = await processor.process_track(sample_track, OutputFormat.FLAC, lyrics="words")

        assert result.filename == "out.flac"
        assert result.buffer == b"encoded"
        assert result.audio is AUDIO
        assert fetcher.calls == [True]
        assert transcoder.calls == [
            {"requested": OutputFormat.FLAC, "cover_art": b"jpeg", "lyrics": "words"}
        ]

    @pytest.mark.asyncio
    async def test_mp3_request_does_not_prefer_lossless(self, fake_http, sample_track):
        fake_http.add("GET", "https://i.scdn.co/", HttpResponse(status=404, body=b""))
        fetcher = FakeFetcher(AUDIO)
        transcoder = FakeTranscoder(OutputFormat.MP3)

        await TrackProcessor(fetcher, transcoder, fake_http).process_track(sample_track, OutputFormat.MP3)

        assert fetcher.calls == [False]
        assert transcoder.calls[0]["cover_art"] is None

    @pytest.mark.asyncio
    async def test_unavailable_propagates(self, fake_http, sample_track):
        processor = TrackProcessor(
            FakeFetcher(AudioUnavailableError("Test Song", "Test Artist")),
            FakeTranscoder(OutputFormat.MP3),
            fake_http,
        )
        with pytest.raises(AudioUnavailableError):
            await processor.process_track(sample_track, OutputFormat.MP3)

    @pytest.mark.asyncio
    async def test_alac_output_gets_atoms(self, fake_http, sample_track):
        fake_http.add("GET", "https://i.scdn.co/", HttpResponse(status=200, body=b"jpeg"))
        processor = TrackProcessor(FakeFetcher(AUDIO), FakeTranscoder(OutputFormat.ALAC), fake_http)
        ids = CatalogIds(track_id=42)

        with patch("spot_audio.pipeline.process.patch_mp4_tags", return_value=b"tagged") as patcher:
            result = await processor.process_track(sample_track, OutputFormat.ALAC, catalog_ids=ids)

        assert result.buffer == b"tagged"
        patcher.assert_called_once_with(b"encoded", explicit=False, catalog_ids=ids)

    @pytest.mark.asyncio
    async def test_alac_tag_failure_keeps_file(self, fake_http, sample_track):
        fake_http.add("GET", "https://i.scdn.co/", HttpResponse(status=200, body=b"jpeg"))
        processor = TrackProcessor(FakeFetcher(AUDIO), FakeTranscoder(OutputFormat.ALAC), fake_http)

        result = await processor.process_track(
            sample_track, OutputFormat.ALAC, catalog_ids=CatalogIds(track_id=42)
        )

        assert result.buffer == b"encoded"

    @pytest.mark.asyncio
    async def test_raw_fallback_is_not_tagged(self, fake_http, sample_track):
        fake_http.add("GET", "https://i.scdn.co/", HttpResponse(status=200, body=b"jpeg"))
        processor = TrackProcessor(FakeFetcher(AUDIO), FakeTranscoder(None), fake_http)

        with patch("spot_audio.pipeline.process.patch_mp4_tags") as patcher:
            result = await processor.process_track(sample_track, OutputFormat.ALAC)

        assert result.filename == "out.flac"
        patcher.assert_not_called()


class TestFetchCoverArt:
    """Test cover art download rules"""

    @pytest.mark.asyncio
    async def test_disallowed_host(self, fake_http, sample_track):
        track = dataclasses.replace(sample_track, cover_url="https://evil.example.com/cover.jpg")
        processor = TrackProcessor(FakeFetcher(AUDIO), FakeTranscoder(OutputFormat.MP3), fake_http)

        assert await processor.fetch_cover_art(track) is None
        assert fake_http.calls == []

    @pytest.mark.asyncio
    async def test_download_error(self, fake_http, sample_track):
        fake_http.add("GET", "https://i.scdn.co/", ProviderError("timeout", provider="http"))
        processor = TrackProcessor(FakeFetcher(AUDIO), FakeTranscoder(OutputFormat.MP3), fake_http)

        assert await processor.fetch_cover_art(sample_track) is None

    @pytest.mark.asyncio
    async def test_size_limit_passed(self, fake_http, sample_track):
        fake_http.add("GET", "https://i.scdn.co/", HttpResponse(status=200, body=b"jpeg"))
        processor = TrackProcessor(FakeFetcher(AUDIO), FakeTranscoder(OutputFormat.MP3), fake_http)

        assert await processor.fetch_cover_art(sample_track) == b"jpeg"
        assert fake_http.calls[0]["max_bytes"] == 10 * 1024 * 1024


class TestBuildAudioFetcher:
    """Test waterfall wiring"""

    def test_source_order(self, fake_http, monkeypatch, temp_dir):
        monkeypatch.chdir(temp_dir)
        config = load_config()

        fetcher = build_audio_fetcher(config, fake_http)

        assert [source.name for source in fetcher.primary_sources] == ["tidal", "deezer"]
        assert fetcher.fallback_source.name == "youtube"
