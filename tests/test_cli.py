"""Test the CLI batch loop and output naming"""

import dataclasses
from unittest.mock import patch

import pytest

from spot_audio.cli import _run, unique_output_path
from spot_audio.core.config import load_config
from spot_audio.models import AudioResult, AudioSource
from spot_audio.pipeline import ProcessedTrack
from spot_audio.transcode import OutputFormat


class FakeMetadataResolver:
    tracks = {}

    def __init__(self, client_id, client_secret):
        pass

    async def resolve(self, url):
        return self.tracks[url]


class FakeProcessor:
    def __init__(self, filenames):
        self.filenames = filenames

    async def process_track(self, track, requested):
        return ProcessedTrack(
            track=track,
            filename=self.filenames[track.name],
            buffer=track.name.encode(),
            audio=AudioResult(buffer=b"audio", source=AudioSource.DEEZER, format="flac", bitrate=0),
        )


class TestUniqueOutputPath:
    """Test collision suffixes"""

    def test_first_use_keeps_name(self, temp_dir):
        taken = set()
        assert unique_output_path(temp_dir, "A - B.flac", taken) == temp_dir / "A - B.flac"
        assert taken == {temp_dir / "A - B.flac"}

    def test_repeats_are_numbered(self, temp_dir):
        taken = set()
        paths = [unique_output_path(temp_dir, "A - B.flac", taken) for _ in range(3)]
        assert [p.name for p in paths] == ["A - B.flac", "A - B (2).flac", "A - B (3).flac"]

    def test_existing_file_from_earlier_run_is_replaced(self, temp_dir):
        (temp_dir / "A - B.mp3").write_bytes(b"old")
        assert unique_output_path(temp_dir, "A - B.mp3", set()).name == "A - B.mp3"


class TestRunBatch:
    """Test writing a batch of processed tracks"""

    @pytest.mark.asyncio
    async def test_same_names_and_write_errors(self, sample_track, monkeypatch, temp_dir):
        monkeypatch.chdir(temp_dir)
        output_dir = temp_dir / "out"
        output_dir.mkdir()

        first = sample_track
        second = dataclasses.replace(sample_track, name="Test Song Live")
        third = dataclasses.replace(sample_track, name="Unwritable")
        FakeMetadataResolver.tracks = {"u1": first, "u2": second, "u3": third}
        processor = FakeProcessor({
            first.name: "Test Artist - Test Song.flac",
            second.name: "Test Artist - Test Song.flac",
            third.name: "no-such-dir/Unwritable.flac",
        })

        with patch("spot_audio.cli.SpotifyMetadataResolver", FakeMetadataResolver), \
                patch("spot_audio.cli.TrackProcessor.from_config", return_value=processor), \
                patch("spot_audio.cli.log_fetch_failure") as failure_log:
            succeeded, failed = await _run(
                load_config(), ["u1", "u2", "u3"], None, OutputFormat.FLAC, output_dir, concurrency=5
            )

        assert (succeeded, failed) == (2, 1)
        assert (output_dir / "Test Artist - Test Song.flac").read_bytes() == b"Test Song"
        assert (output_dir / "Test Artist - Test Song (2).flac").read_bytes() == b"Test Song Live"

        failure_log.assert_called_once()
        args = failure_log.call_args.args
        assert args[1] == "Unwritable"
        assert args[4].startswith("Could not write file")
