"""Test configuration and fixtures"""

import json
import tempfile
from pathlib import Path
from typing import Any, Callable

import pytest

from spot_audio.core.exceptions import ProviderError
from spot_audio.core.http import HttpResponse
from spot_audio.models import CanonicalTrack


def json_response(data: Any, status: int = 200, cookies: dict[str, str] | None = None) -> HttpResponse:
    """Build an HttpResponse carrying a JSON body."""
    return HttpResponse(status=status, body=json.dumps(data).encode("utf-8"), cookies=cookies or {})


class FakeHttp:
    """
    Stand-in for HttpClient.

    Routes are matched on method and URL prefix, most recently added first.
    A route's value may be an HttpResponse, an exception to raise, or a
    callable taking the recorded call and returning either.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, str, Any]] = []
        self.calls: list[dict[str, Any]] = []

    def add(self, method: str, url_prefix: str, reply: HttpResponse | Exception | Callable) -> None:
        self.routes.insert(0, (method, url_prefix, reply))

    def calls_to(self, url_prefix: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["url"].startswith(url_prefix)]

    async def request(self, method: str, url: str, **kwargs: Any) -> HttpResponse:
        call = {"method": method, "url": url, **kwargs}
        self.calls.append(call)
        for route_method, prefix, reply in self.routes:
            if route_method == method and url.startswith(prefix):
                if callable(reply) and not isinstance(reply, (HttpResponse, Exception)):
                    reply = reply(call)
                if isinstance(reply, Exception):
                    raise reply
                return reply
        raise ProviderError(f"No route for {method} {url}", provider="test")


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def fake_http():
    return FakeHttp()


@pytest.fixture
def sample_track():
    """A fully tagged canonical track"""
    return CanonicalTrack(
        name="Test Song",
        artist="Test Artist",
        album="Test Album",
        duration_ms=210000,
        isrc="USRC17607839",
        spotify_url="https://open.spotify.com/track/abc123",
        album_artist="Test Artist",
        cover_url="https://i.scdn.co/image/cover",
        explicit=False,
        track_number=3,
        total_tracks=12,
        disc_number=1,
        release_date="2023-01-01",
        genre="pop",
        label="Test Label",
        copyright_text="2023 Test Label",
    )


@pytest.fixture
def sample_track_data():
    """Sample Spotify track data for testing"""
    return {
        'id': 'abc123',
        'name': 'Test Song',
        'artists': [{'id': 'artist_123', 'name': 'Test Artist'}],
        'album': {
            'id': 'album_123',
            'name': 'Test Album',
            'album_type': 'album',
            'total_tracks': 12,
            'release_date': '2023-01-01',
            'artists': [{'id': 'artist_123', 'name': 'Test Artist'}],
            'images': [
                {'url': 'https://i.scdn.co/image/small', 'width': 64, 'height': 64},
                {'url': 'https://i.scdn.co/image/large', 'width': 640, 'height': 640},
            ],
        },
        'duration_ms': 210000,
        'explicit': True,
        'track_number': 3,
        'disc_number': 1,
        'external_ids': {'isrc': 'USRC17607839'},
        'external_urls': {'spotify': 'https://open.spotify.com/track/abc123'},
    }
