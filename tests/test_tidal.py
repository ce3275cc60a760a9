"""Test the Tidal session and audio source"""

import base64
import json

import pytest

from conftest import json_response
from spot_audio.core.config import TidalConfig
from spot_audio.core.exceptions import ProviderError
from spot_audio.core.http import HttpResponse
from spot_audio.core.result import Failure, FailureReason, Ok
from spot_audio.models import AudioSource, QualityTier
from spot_audio.providers.tidal import (
    API_V1_URL,
    OPENAPI_V2_URL,
    TOKEN_URL,
    SessionState,
    TidalSessionManager,
    TidalSource,
    TokenEntry,
    is_token_valid,
    parse_iso_duration,
)


REFRESH_CONFIG = TidalConfig(client_id="cid", refresh_token="refresh", access_token="static")


class FakeClock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


def _playback(url: str, tier: str, encryption: str = "NONE") -> HttpResponse:
    manifest = base64.b64encode(json.dumps({"urls": [url]}).encode()).decode()
    return json_response({"manifest": manifest, "audioQuality": tier, "encryptionType": encryption})


class TestTokenValidity:
    """Test the expiry boundary"""

    def test_valid_strictly_before_expiry(self):
        entry = TokenEntry("tok", expires_at=5000)
        assert is_token_valid(entry, 4999)
        assert not is_token_valid(entry, 5000)
        assert not is_token_valid(None, 0)


class TestParseIsoDuration:
    """Test ISO 8601 duration parsing"""

    @pytest.mark.parametrize("value, expected", [
        ("PT3M17S", 197),
        ("PT1H2M3S", 3723),
        ("PT45S", 45),
        ("PT3M17.5S", 197),
        ("garbage", 0),
        ("PT", 0),
    ])
    def test_parse(self, value, expected):
        assert parse_iso_duration(value) == expected


class TestTidalSessionManager:
    """Test refresh, caching and fallback"""

    @pytest.mark.asyncio
    async def test_refresh_and_cache(self, fake_http):
        fake_http.add("POST", TOKEN_URL, json_response({"access_token": "fresh", "expires_in": 3600}))
        clock = FakeClock()
        session = TidalSessionManager(fake_http, REFRESH_CONFIG, clock=clock)

        assert await session.get_access_token() == "fresh"
        assert session.state is SessionState.VALID
        assert await session.get_access_token() == "fresh"
        assert len(fake_http.calls) == 1

        form = fake_http.calls[0]["data"]
        assert form["grant_type"] == "refresh_token"
        assert form["scope"] == "r_usr w_usr"
        assert "client_secret" not in form

    @pytest.mark.asyncio
    async def test_refreshes_after_expiry_margin(self, fake_http):
        fake_http.add("POST", TOKEN_URL, json_response({"access_token": "fresh", "expires_in": 3600}))
        clock = FakeClock()
        session = TidalSessionManager(fake_http, REFRESH_CONFIG, clock=clock)
        await session.get_access_token()

        clock.now += (3600 - 60) * 1000 - 1
        await session.get_access_token()
        assert len(fake_http.calls) == 1

        clock.now += 1
        await session.get_access_token()
        assert len(fake_http.calls) == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_uses_static_token(self, fake_http):
        fake_http.add("POST", TOKEN_URL, json_response({"error": "invalid_grant"}, status=400))
        session = TidalSessionManager(fake_http, REFRESH_CONFIG, clock=FakeClock())

        assert await session.get_access_token() == "static"
        assert session.state is SessionState.FALLBACK

    @pytest.mark.asyncio
    async def test_transport_error_uses_static_token(self, fake_http):
        fake_http.add("POST", TOKEN_URL, ProviderError("timeout", provider="tidal"))
        session = TidalSessionManager(fake_http, REFRESH_CONFIG, clock=FakeClock())
        assert await session.get_access_token() == "static"

    @pytest.mark.asyncio
    async def test_static_token_without_refresh_flow(self, fake_http):
        session = TidalSessionManager(fake_http, TidalConfig(access_token="static"), clock=FakeClock())
        assert await session.get_access_token() == "static"
        assert fake_http.calls == []

    @pytest.mark.asyncio
    async def test_unavailable_without_credentials(self, fake_http):
        session = TidalSessionManager(fake_http, TidalConfig(), clock=FakeClock())
        assert await session.get_access_token() is None
        assert session.state is SessionState.UNAVAILABLE


class TestTidalSource:
    """Test the full Tidal attempt"""

    def _source(self, fake_http):
        session = TidalSessionManager(fake_http, TidalConfig(access_token="static"), clock=FakeClock())
        return TidalSource(fake_http, session)

    def _isrc_hit(self, fake_http, isrc="USRC17607839", duration="PT3M30S"):
        fake_http.add("GET", f"{OPENAPI_V2_URL}/tracks", json_response({
            "data": [{"id": "77646170", "attributes": {"isrc": isrc, "duration": duration}}],
        }))

    @pytest.mark.asyncio
    async def test_session_unavailable(self, fake_http, sample_track):
        session = TidalSessionManager(fake_http, TidalConfig(), clock=FakeClock())
        result = await TidalSource(fake_http, session).attempt(sample_track, True)

        assert isinstance(result, Failure)
        assert result.reason is FailureReason.SESSION_UNAVAILABLE
        assert fake_http.calls == []

    @pytest.mark.asyncio
    async def test_hi_res_download(self, fake_http, sample_track):
        self._isrc_hit(fake_http)
        playback_url = f"{API_V1_URL}/tracks/77646170/playbackinfopostpaywall/v4"
        fake_http.add("GET", playback_url, _playback("https://sp-ad-cf.audio.tidal.com/a.flac", "HI_RES_LOSSLESS"))
        fake_http.add("GET", "https://sp-ad-cf.audio.tidal.com/", HttpResponse(status=200, body=b"fLaC-data"))

        result = await self._source(fake_http).attempt(sample_track, True)

        assert isinstance(result, Ok)
        audio = result.value
        assert audio.source is AudioSource.TIDAL
        assert audio.format == "flac"
        assert audio.bitrate == 0
        assert audio.tier is QualityTier.HI_RES_LOSSLESS
        assert audio.buffer == b"fLaC-data"
        assert fake_http.calls_to(playback_url)[0]["headers"]["Authorization"] == "Bearer static"

    @pytest.mark.asyncio
    async def test_lossy_tier_is_m4a(self, fake_http, sample_track):
        self._isrc_hit(fake_http)
        fake_http.add("GET", f"{API_V1_URL}/tracks/77646170/playbackinfopostpaywall/v4",
                      _playback("https://sp-ad-cf.audio.tidal.com/a.m4a", "HIGH"))
        fake_http.add("GET", "https://sp-ad-cf.audio.tidal.com/", HttpResponse(status=200, body=b"aac"))

        audio = (await self._source(fake_http).attempt(sample_track, False)).value

        assert audio.format == "m4a"
        assert audio.bitrate == 320
        assert audio.tier is QualityTier.HIGH

    @pytest.mark.asyncio
    async def test_mismatch_never_downloads(self, fake_http, sample_track):
        self._isrc_hit(fake_http, isrc="GBAYE0000001", duration="PT5M0S")

        result = await self._source(fake_http).attempt(sample_track, True)

        assert result.reason is FailureReason.IDENTITY_MISMATCH
        assert fake_http.calls_to(f"{API_V1_URL}/tracks/") == []

    @pytest.mark.asyncio
    async def test_no_usable_tier(self, fake_http, sample_track):
        self._isrc_hit(fake_http)
        fake_http.add("GET", f"{API_V1_URL}/tracks/77646170/playbackinfopostpaywall/v4",
                      _playback("https://cdn/drm", "LOSSLESS", encryption="OLD_AES"))

        result = await self._source(fake_http).attempt(sample_track, True)
        assert result.reason is FailureReason.NO_USABLE_TIER

    @pytest.mark.asyncio
    async def test_empty_stream(self, fake_http, sample_track):
        self._isrc_hit(fake_http)
        fake_http.add("GET", f"{API_V1_URL}/tracks/77646170/playbackinfopostpaywall/v4",
                      _playback("https://sp-ad-cf.audio.tidal.com/a.flac", "LOSSLESS"))
        fake_http.add("GET", "https://sp-ad-cf.audio.tidal.com/", HttpResponse(status=200, body=b""))

        result = await self._source(fake_http).attempt(sample_track, True)
        assert result.reason is FailureReason.EMPTY_PAYLOAD

    @pytest.mark.asyncio
    async def test_lookup_without_isrc_is_judged_by_duration(self, fake_http, sample_track):
        """A result that omits its ISRC does not inherit the searched one"""
        fake_http.add("GET", f"{OPENAPI_V2_URL}/tracks", json_response({
            "data": [{"id": "1", "attributes": {"duration": "PT9M0S"}}],
        }))

        result = await self._source(fake_http).attempt(sample_track, True)

        assert result.reason is FailureReason.IDENTITY_MISMATCH
        assert fake_http.calls_to(f"{API_V1_URL}/tracks/") == []
        assert fake_http.calls_to(f"{OPENAPI_V2_URL}/trackManifests/") == []

    @pytest.mark.asyncio
    async def test_matching_isrc_with_wrong_duration_rejected(self, fake_http, sample_track):
        self._isrc_hit(fake_http, isrc=sample_track.isrc, duration="PT9M0S")

        result = await self._source(fake_http).attempt(sample_track, True)

        assert result.reason is FailureReason.IDENTITY_MISMATCH
        assert fake_http.calls_to(f"{API_V1_URL}/tracks/") == []

    @pytest.mark.asyncio
    async def test_bare_lookup_fetches_track_metadata(self, fake_http, sample_track):
        fake_http.add("GET", f"{OPENAPI_V2_URL}/tracks", json_response({"data": [{"id": "55"}]}))
        fake_http.add("GET", f"{OPENAPI_V2_URL}/tracks/55", json_response({
            "data": {"id": "55", "attributes": {"isrc": "GBAYE0000001", "duration": "PT6M0S"}},
        }))

        result = await self._source(fake_http).attempt(sample_track, True)

        assert result.reason is FailureReason.IDENTITY_MISMATCH
        assert len(fake_http.calls_to(f"{OPENAPI_V2_URL}/tracks/55")) == 1

    @pytest.mark.asyncio
    async def test_track_manifest_download(self, fake_http, sample_track):
        self._isrc_hit(fake_http)
        playlist = "#EXTM3U\n#EXTINF:210.0,\nhttps://sp-ad-cf.audio.tidal.com/v2.flac\n"
        manifest_url = f"{OPENAPI_V2_URL}/trackManifests/77646170"
        fake_http.add("GET", manifest_url, json_response({"data": {"id": "77646170", "attributes": {
            "manifest": "data:application/vnd.apple.mpegurl;base64," + base64.b64encode(playlist.encode()).decode(),
            "audioCodec": "flac",
            "audioSamplingRate": 192000,
        }}}))
        fake_http.add("GET", "https://sp-ad-cf.audio.tidal.com/", HttpResponse(status=200, body=b"fLaC-v2"))

        audio = (await self._source(fake_http).attempt(sample_track, True)).value

        assert audio.format == "flac"
        assert audio.tier is QualityTier.HI_RES_LOSSLESS
        assert audio.buffer == b"fLaC-v2"
        assert fake_http.calls_to(f"{API_V1_URL}/tracks/") == []

        call = fake_http.calls_to(manifest_url)[0]
        assert call["headers"]["Authorization"] == "Bearer static"
        assert ("manifestType", "HLS") in call["params"]
        assert [v for k, v in call["params"] if k == "formats"] == ["FLAC_HIRES", "FLAC", "AACLC"]

    @pytest.mark.asyncio
    async def test_track_manifest_failure_uses_playback_info(self, fake_http, sample_track):
        self._isrc_hit(fake_http)
        fake_http.add("GET", f"{OPENAPI_V2_URL}/trackManifests/", HttpResponse(status=404, body=b""))
        fake_http.add("GET", f"{API_V1_URL}/tracks/77646170/playbackinfopostpaywall/v4",
                      _playback("https://sp-ad-cf.audio.tidal.com/a.flac", "LOSSLESS"))
        fake_http.add("GET", "https://sp-ad-cf.audio.tidal.com/", HttpResponse(status=200, body=b"fLaC-v1"))

        audio = (await self._source(fake_http).attempt(sample_track, False)).value

        assert audio.buffer == b"fLaC-v1"
        assert audio.tier is QualityTier.LOSSLESS
        assert len(fake_http.calls_to(f"{OPENAPI_V2_URL}/trackManifests/")) == 1
        call = fake_http.calls_to(f"{OPENAPI_V2_URL}/trackManifests/")[0]
        assert [v for k, v in call["params"] if k == "formats"] == ["FLAC", "AACLC"]

    @pytest.mark.asyncio
    async def test_unresolved_track_requests_no_stream(self, fake_http, sample_track):
        fake_http.add("GET", f"{OPENAPI_V2_URL}/tracks", json_response({"data": []}))
        fake_http.add("GET", f"{API_V1_URL}/search/tracks", json_response({"items": []}))

        result = await self._source(fake_http).attempt(sample_track, True)

        assert result.reason is FailureReason.IDENTITY_NOT_FOUND
        assert fake_http.calls_to(f"{API_V1_URL}/tracks/") == []
        assert fake_http.calls_to(f"{OPENAPI_V2_URL}/trackManifests/") == []
        assert len(fake_http.calls_to(f"{API_V1_URL}/search/tracks")) >= 1
