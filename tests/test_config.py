"""Test configuration loading"""

from pathlib import Path

import pytest

from spot_audio.core.config import ENV_OVERRIDES, _apply_env_overrides, load_config
from spot_audio.core.exceptions import ConfigError


@pytest.fixture
def clean_env(monkeypatch, temp_dir):
    """Run in an empty directory with no provider variables set"""
    for env_var in ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.chdir(temp_dir)
    return temp_dir


def _write_config(directory: Path, content: str) -> Path:
    path = directory / "config.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadConfig:
    """Test config.yaml parsing"""

    def test_defaults_without_file(self, clean_env):
        config = load_config()
        assert config.tidal.client_id is None
        assert not config.tidal.can_refresh
        assert config.deezer.arl is None
        assert config.acoustid.api_key is None
        assert config.songlink.enabled is False
        assert config.transcode.max_concurrent == 4
        assert config.transcode.timeout_seconds == 120
        assert config.transcode.max_output_bytes == 50 * 1024 * 1024
        assert config.output.prefer_lossless is True
        assert config.output.directory.is_absolute()

    def test_explicit_missing_file(self, clean_env):
        with pytest.raises(ConfigError, match="not found"):
            load_config(clean_env / "missing.yaml")

    def test_full_file(self, clean_env):
        path = _write_config(clean_env, """
tidal:
  client_id: "  cid  "
  refresh_token: "rt"
deezer:
  arl: "arl-cookie"
songlink:
  enabled: true
transcode:
  max_concurrent: 2
  max_output_mb: 10
output:
  directory: "./music"
  prefer_lossless: false
""")
        config = load_config(path)

        assert config.tidal.client_id == "cid"
        assert config.tidal.can_refresh
        assert config.deezer.arl == "arl-cookie"
        assert config.songlink.enabled is True
        assert config.transcode.max_concurrent == 2
        assert config.transcode.max_output_bytes == 10 * 1024 * 1024
        assert config.output.directory == (clean_env / "music").resolve()
        assert config.output.prefer_lossless is False

    def test_environment_wins(self, clean_env, monkeypatch):
        path = _write_config(clean_env, "deezer:\n  arl: from-file\n")
        monkeypatch.setenv("DEEZER_ARL", "from-env")
        monkeypatch.setenv("SONGLINK_ENABLED", "True")

        config = load_config(path)

        assert config.deezer.arl == "from-env"
        assert config.songlink.enabled is True

    def test_empty_file(self, clean_env):
        config = load_config(_write_config(clean_env, ""))
        assert config.deezer.arl is None

    @pytest.mark.parametrize("content,match", [
        ("tidal: [1, 2]\n", "must be a dictionary"),
        ("- just\n- a list\n", "YAML dictionary"),
        ("tidal: {client_id: [unclosed\n", "Invalid YAML"),
        ("transcode:\n  max_concurrent: 0\n", "positive integer"),
        ("transcode:\n  timeout_seconds: true\n", "positive integer"),
        ("songlink:\n  enabled: maybe\n", "true or false"),
        ("deezer:\n  arl: 123\n", "must be a string"),
        ("output:\n  directory: ''\n", "non-empty string"),
    ])
    def test_invalid_values(self, clean_env, content, match):
        with pytest.raises(ConfigError, match=match):
            load_config(_write_config(clean_env, content))


class TestApplyEnvOverrides:
    """Test environment merging"""

    def test_does_not_mutate_input(self):
        raw = {"deezer": {"arl": "file"}}
        merged = _apply_env_overrides(raw, {"DEEZER_ARL": "env"})
        assert merged["deezer"]["arl"] == "env"
        assert raw["deezer"]["arl"] == "file"

    def test_empty_values_ignored(self):
        merged = _apply_env_overrides({}, {"DEEZER_ARL": "", "ACOUSTID_API_KEY": "key"})
        assert "deezer" not in merged
        assert merged["acoustid"] == {"api_key": "key"}
