"""Test the Songlink resolver"""

import pytest

from conftest import json_response
from spot_audio.core.exceptions import ProviderError
from spot_audio.providers.songlink import (
    MAX_REQUESTS_PER_WINDOW,
    SONGLINK_API_URL,
    SonglinkResolver,
    parse_songlink_response,
)


SONGLINK_BODY = {
    "linksByPlatform": {
        "deezer": {"entityUniqueId": "DEEZER_SONG::3135556"},
        "tidal": {"entityUniqueId": "TIDAL_SONG::77646170"},
        "youtube": {"entityUniqueId": "YOUTUBE_VIDEO::abc"},
    },
    "entitiesByUniqueId": {
        "DEEZER_SONG::3135556": {"id": "3135556"},
        "TIDAL_SONG::77646170": {"id": 77646170},
        "YOUTUBE_VIDEO::abc": {"id": "abc"},
    },
}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestParseSonglinkResponse:
    """Test response parsing"""

    def test_extracts_supported_platforms(self):
        links = parse_songlink_response(SONGLINK_BODY)
        assert links.id_for("deezer") == "3135556"
        assert links.id_for("tidal") == "77646170"
        assert links.id_for("youtube") is None

    def test_missing_entity(self):
        body = {"linksByPlatform": {"deezer": {"entityUniqueId": "X"}}, "entitiesByUniqueId": {}}
        assert parse_songlink_response(body).ids == {}


class TestSonglinkResolver:
    """Test caching and the request budget"""

    @pytest.mark.asyncio
    async def test_disabled_makes_no_requests(self, fake_http):
        resolver = SonglinkResolver(fake_http, enabled=False, min_gap_seconds=0)
        assert await resolver.resolve("https://open.spotify.com/track/x") is None
        assert fake_http.calls == []

    @pytest.mark.asyncio
    async def test_successful_lookup_is_cached(self, fake_http):
        fake_http.add("GET", SONGLINK_API_URL, json_response(SONGLINK_BODY))
        resolver = SonglinkResolver(fake_http, clock=FakeClock(), min_gap_seconds=0)

        first = await resolver.resolve("https://open.spotify.com/track/x")
        second = await resolver.resolve("https://open.spotify.com/track/x")

        assert first.id_for("deezer") == "3135556"
        assert second is first
        assert len(fake_http.calls) == 1
        assert fake_http.calls[0]["params"]["url"] == "https://open.spotify.com/track/x"

    @pytest.mark.asyncio
    async def test_cache_expires(self, fake_http):
        fake_http.add("GET", SONGLINK_API_URL, json_response(SONGLINK_BODY))
        clock = FakeClock()
        resolver = SonglinkResolver(fake_http, clock=clock, min_gap_seconds=0)

        await resolver.resolve("https://open.spotify.com/track/x")
        clock.now = 3600
        await resolver.resolve("https://open.spotify.com/track/x")

        assert len(fake_http.calls) == 2

    @pytest.mark.asyncio
    async def test_budget_exhaustion_returns_none(self, fake_http):
        fake_http.add("GET", SONGLINK_API_URL, json_response(SONGLINK_BODY))
        resolver = SonglinkResolver(fake_http, clock=FakeClock(), min_gap_seconds=0)

        for n in range(MAX_REQUESTS_PER_WINDOW):
            assert await resolver.resolve(f"https://open.spotify.com/track/{n}") is not None
        assert await resolver.resolve("https://open.spotify.com/track/over") is None
        assert len(fake_http.calls) == MAX_REQUESTS_PER_WINDOW

    @pytest.mark.asyncio
    async def test_errors_return_none_and_are_not_cached(self, fake_http):
        fake_http.add("GET", SONGLINK_API_URL, json_response({"error": "x"}, status=429))
        resolver = SonglinkResolver(fake_http, clock=FakeClock(), min_gap_seconds=0)

        assert await resolver.resolve("https://open.spotify.com/track/x") is None

        fake_http.add("GET", SONGLINK_API_URL, ProviderError("timeout", provider="songlink"))
        assert await resolver.resolve("https://open.spotify.com/track/x") is None
        assert len(fake_http.calls) == 2
