"""
Configuration management for spot-audio.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml, with secrets optionally
supplied through environment variables (a .env file is honoured).

The configuration file contains:
    - Tidal OAuth credentials (refresh token flow, static token fallback)
    - Deezer ARL session cookie
    - AcoustID API key
    - Songlink cross-platform resolver toggle
    - Spotify API credentials (metadata resolution for the CLI)
    - Transcoding limits
    - Output directory

Every provider section is optional. A provider without credentials is
treated as unavailable and the pipeline falls through to the next one.

Example config.yaml:
    tidal:
      client_id: "your_client_id"
      client_secret: null
      refresh_token: "your_refresh_token"
      access_token: null          # Static fallback token
    
    deezer:
      arl: "your_arl_cookie"
    
    acoustid:
      api_key: "your_acoustid_key"
    
    songlink:
      enabled: true
    
    spotify:
      client_id: "your_client_id"
      client_secret: "your_client_secret"
    
    transcode:
      max_concurrent: 4
      timeout_seconds: 120
      max_output_mb: 50
    
    output:
      directory: "~/Music/SpotAudio"
      prefer_lossless: true

Environment Overrides:
    TIDAL_CLIENT_ID, TIDAL_CLIENT_SECRET, TIDAL_REFRESH_TOKEN,
    TIDAL_ACCESS_TOKEN, DEEZER_ARL, ACOUSTID_API_KEY, SONGLINK_ENABLED,
    SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv

from spot_audio.core.exceptions import ConfigError


# Default configuration file name (looked up in current working directory)
CONFIG_FILENAME = "config.yaml"

DEFAULT_OUTPUT_DIRECTORY = "~/Music/SpotAudio"
DEFAULT_MAX_CONCURRENT_TRANSCODES = 4
DEFAULT_TRANSCODE_TIMEOUT_SECONDS = 120
DEFAULT_MAX_OUTPUT_MB = 50

# (section, field) -> environment variable
ENV_OVERRIDES: dict[tuple[str, str], str] = {
    ("tidal", "client_id"): "TIDAL_CLIENT_ID",
    ("tidal", "client_secret"): "TIDAL_CLIENT_SECRET",
    ("tidal", "refresh_token"): "TIDAL_REFRESH_TOKEN",
    ("tidal", "access_token"): "TIDAL_ACCESS_TOKEN",
    ("deezer", "arl"): "DEEZER_ARL",
    ("acoustid", "api_key"): "ACOUSTID_API_KEY",
    ("songlink", "enabled"): "SONGLINK_ENABLED",
    ("spotify", "client_id"): "SPOTIFY_CLIENT_ID",
    ("spotify", "client_secret"): "SPOTIFY_CLIENT_SECRET",
}


@dataclass(frozen=True)
class TidalConfig:
    """
    Tidal API credentials.
    
    Attributes:
        client_id: OAuth client ID used for the refresh-token exchange.
        client_secret: Optional OAuth client secret.
        refresh_token: Long-lived refresh token.
        access_token: Static pre-provisioned access token, used when the
                      refresh flow is not configured or fails.
    """
    client_id: str | None = None
    client_secret: str | None = None
    refresh_token: str | None = None
    access_token: str | None = None
    
    @property
    def can_refresh(self) -> bool:
        """True if the OAuth refresh flow is configured."""
        return bool(self.client_id and self.refresh_token)


@dataclass(frozen=True)
class DeezerConfig:
    """
    Deezer session configuration.
    
    Attributes:
        arl: The long-lived 'arl' session cookie of a logged-in account.
    """
    arl: str | None = None


@dataclass(frozen=True)
class AcoustIdConfig:
    """
    AcoustID fingerprint lookup configuration.
    
    Attributes:
        api_key: Application API key from https://acoustid.org/new-application.
                 Without it acoustic verification always reports unverified.
    """
    api_key: str | None = None


@dataclass(frozen=True)
class SonglinkConfig:
    """Cross-platform link resolver toggle."""
    enabled: bool = False


@dataclass(frozen=True)
class SpotifyConfig:
    """
    Spotify API credentials, used only to turn track URLs into metadata.
    
    Attributes:
        client_id: The Spotify application client ID.
        client_secret: The Spotify application client secret.
    """
    client_id: str | None = None
    client_secret: str | None = None


@dataclass(frozen=True)
class TranscodeConfig:
    """
    ffmpeg invocation limits.
    
    Attributes:
        max_concurrent: Maximum ffmpeg processes running at once, process-wide.
        timeout_seconds: Wall-clock limit for a single ffmpeg run.
        max_output_bytes: Output-size ceiling for a single ffmpeg run.
    """
    max_concurrent: int = DEFAULT_MAX_CONCURRENT_TRANSCODES
    timeout_seconds: int = DEFAULT_TRANSCODE_TIMEOUT_SECONDS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_MB * 1024 * 1024


@dataclass(frozen=True)
class OutputConfig:
    """
    Output configuration.
    
    Attributes:
        directory: Absolute path where processed files and logs are written.
        prefer_lossless: Ask the lossless providers for their best tier first.
    """
    directory: Path
    prefer_lossless: bool = True


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.
    
    Created by load_config() and treated as immutable.
    
    Example:
        config = load_config()
        if not config.tidal.can_refresh and not config.tidal.access_token:
            print("Tidal disabled")
    """
    tidal: TidalConfig
    deezer: DeezerConfig
    acoustid: AcoustIdConfig
    songlink: SonglinkConfig
    spotify: SpotifyConfig
    transcode: TranscodeConfig
    output: OutputConfig


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml and the environment.
    
    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory
                     and falls back to environment variables only when it
                     does not exist.
    
    Returns:
        Config: A frozen dataclass containing all configuration values.
    
    Raises:
        ConfigError: If an explicit config file is not found, has invalid YAML
                     syntax, or contains values of the wrong type.
    
    Behavior:
        1. Load .env into the process environment (existing vars win)
        2. Read and parse YAML content, if any
        3. Apply environment overrides on top of file values
        4. Validate and build each section with defaults
    """
    load_dotenv()
    
    explicit = config_path is not None
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME
    
    raw_config: dict[str, Any] = {}
    if config_path.exists():
        raw_config = _read_config_file(config_path)
    elif explicit:
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )
    
    for section in ("tidal", "deezer", "acoustid", "songlink", "spotify", "transcode", "output"):
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )
    
    merged = _apply_env_overrides(raw_config, os.environ)
    
    return Config(
        tidal=TidalConfig(
            client_id=_optional_str(merged, "tidal", "client_id"),
            client_secret=_optional_str(merged, "tidal", "client_secret"),
            refresh_token=_optional_str(merged, "tidal", "refresh_token"),
            access_token=_optional_str(merged, "tidal", "access_token"),
        ),
        deezer=DeezerConfig(arl=_optional_str(merged, "deezer", "arl")),
        acoustid=AcoustIdConfig(api_key=_optional_str(merged, "acoustid", "api_key")),
        songlink=SonglinkConfig(enabled=_parse_bool(merged, "songlink", "enabled", False)),
        spotify=SpotifyConfig(
            client_id=_optional_str(merged, "spotify", "client_id"),
            client_secret=_optional_str(merged, "spotify", "client_secret"),
        ),
        transcode=_parse_transcode_config(merged.get("transcode") or {}),
        output=_parse_output_config(merged.get("output") or {}),
    )


def _read_config_file(config_path: Path) -> dict[str, Any]:
    """Read and parse the YAML file, raising ConfigError on any problem."""
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e
    
    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e
    
    if raw_config is None:
        return {}
    
    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )
    
    return raw_config


def _apply_env_overrides(
    raw_config: dict[str, Any],
    environ: Mapping[str, str]
) -> dict[str, Any]:
    """
    Return a copy of raw_config with non-empty environment variables applied.
    
    Environment values always win over file values so secrets can be kept
    out of config.yaml entirely.
    """
    merged: dict[str, Any] = {
        section: dict(values) for section, values in raw_config.items()
        if isinstance(values, dict)
    }
    
    for (section, field), env_var in ENV_OVERRIDES.items():
        value = environ.get(env_var)
        if value:
            merged.setdefault(section, {})[field] = value
    
    return merged


def _optional_str(config: dict[str, Any], section: str, field: str) -> str | None:
    """Return a stripped string field, or None when absent or blank."""
    value = (config.get(section) or {}).get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(
            f"'{section}.{field}' must be a string",
            details={"field": f"{section}.{field}"}
        )
    value = value.strip()
    return value or None


def _parse_bool(config: dict[str, Any], section: str, field: str, default: bool) -> bool:
    """Accept YAML booleans and the strings 'true'/'false' from the environment."""
    value = (config.get(section) or {}).get(field)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ConfigError(
        f"'{section}.{field}' must be true or false",
        details={"field": f"{section}.{field}", "value": value}
    )


def _positive_int(section_values: dict[str, Any], section: str, field: str, default: int) -> int:
    value = section_values.get(field)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(
            f"'{section}.{field}' must be a positive integer",
            details={"field": f"{section}.{field}", "value": value}
        )
    return value


def _parse_transcode_config(transcode_section: dict[str, Any]) -> TranscodeConfig:
    """
    Parse the transcode section, applying defaults.
    
    Raises:
        ConfigError: If any limit is not a positive integer.
    """
    max_output_mb = _positive_int(transcode_section, "transcode", "max_output_mb", DEFAULT_MAX_OUTPUT_MB)
    return TranscodeConfig(
        max_concurrent=_positive_int(
            transcode_section, "transcode", "max_concurrent", DEFAULT_MAX_CONCURRENT_TRANSCODES
        ),
        timeout_seconds=_positive_int(
            transcode_section, "transcode", "timeout_seconds", DEFAULT_TRANSCODE_TIMEOUT_SECONDS
        ),
        max_output_bytes=max_output_mb * 1024 * 1024,
    )


def _parse_output_config(output_section: dict[str, Any]) -> OutputConfig:
    """
    Parse the output section.
    
    Expands ~ to home directory and converts to absolute Path.
    Does NOT create the directory.
    """
    directory = output_section.get("directory", DEFAULT_OUTPUT_DIRECTORY)
    
    if not isinstance(directory, str) or not directory.strip():
        raise ConfigError(
            "'output.directory' must be a non-empty string",
            details={"field": "output.directory"}
        )
    
    prefer_lossless = _parse_bool({"output": output_section}, "output", "prefer_lossless", True)
    
    return OutputConfig(
        directory=Path(directory.strip()).expanduser().resolve(),
        prefer_lossless=prefer_lossless,
    )
