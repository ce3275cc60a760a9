"""
Core module for spot-audio.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading from config.yaml and the environment
    - logger: Logging system with multiple outputs
    - http: Shared aiohttp transport
    - result: Typed Ok/Failure outcomes for provider attempts
    - limiter: FIFO concurrency limiter for ffmpeg
    - cache: TTL cache and sliding-window request budget

Usage:
    from spot_audio.core import (
        Config, load_config,
        HttpClient,
        setup_logging, get_logger,
        SpotAudioError, ConfigError, ProviderError
    )
"""

from spot_audio.core.config import (
    AcoustIdConfig,
    Config,
    DeezerConfig,
    OutputConfig,
    SonglinkConfig,
    SpotifyConfig,
    TidalConfig,
    TranscodeConfig,
    load_config,
)
from spot_audio.core.exceptions import (
    AudioUnavailableError,
    ConfigError,
    ExternalToolError,
    MetadataError,
    ProviderError,
    SpotAudioError,
    TranscodeError,
)
from spot_audio.core.http import HttpClient, HttpResponse
from spot_audio.core.limiter import ConcurrencyLimiter
from spot_audio.core.logger import (
    get_logger,
    log_fetch_failure,
    setup_logging,
    shutdown_logging,
)
from spot_audio.core.result import Failure, FailureReason, Ok, Result

__all__ = [
    # Config
    "Config",
    "TidalConfig",
    "DeezerConfig",
    "AcoustIdConfig",
    "SonglinkConfig",
    "SpotifyConfig",
    "TranscodeConfig",
    "OutputConfig",
    "load_config",
    # Exceptions
    "SpotAudioError",
    "ConfigError",
    "ProviderError",
    "AudioUnavailableError",
    "TranscodeError",
    "MetadataError",
    "ExternalToolError",
    # Transport
    "HttpClient",
    "HttpResponse",
    "ConcurrencyLimiter",
    # Results
    "Ok",
    "Failure",
    "FailureReason",
    "Result",
    # Logger
    "setup_logging",
    "get_logger",
    "log_fetch_failure",
    "shutdown_logging",
]
