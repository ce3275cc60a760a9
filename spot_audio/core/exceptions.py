"""
Exception classes for spot-audio.

This module defines the custom exceptions used throughout the application.
Most failures inside the acquisition pipeline are absorbed and logged; the
exceptions below mark the few places where an error is allowed to travel.

Exception Hierarchy:
    SpotAudioError (base)
        ConfigError - Configuration file or environment issues
        ProviderError - Transport failures talking to an upstream service
        AudioUnavailableError - Every audio source was exhausted
        TranscodeError - ffmpeg could not produce the requested container
        ExternalToolError - An external binary failed, timed out or is missing
        MetadataError - A source URL could not be resolved to track metadata
"""


class SpotAudioError(Exception):
    """
    Base exception for all spot-audio errors.
    
    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., track info, URLs).
    
    Example:
        try:
            result = await fetcher.fetch_best_audio(track)
        except SpotAudioError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """
    
    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.
        
        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'provider': Source tag of the upstream service
                     - 'url': URL that caused the error
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
    
    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(SpotAudioError):
    """
    Raised when the configuration file or environment is invalid.
    
    This is a CRITICAL error that should stop program execution.
    Missing provider credentials are NOT a configuration error: the
    provider is simply treated as unavailable.
    
    Common causes:
        - An explicitly named config file does not exist
        - config.yaml has invalid YAML syntax
        - A field has the wrong type (e.g., negative concurrency)
    """
    pass


class ProviderError(SpotAudioError):
    """
    Raised by the HTTP transport when an upstream call cannot complete.
    
    Timeouts, connection failures and payload-size violations all map to
    this error. Callers inside the pipeline catch it and fall through to
    the next strategy, tier or provider.
    
    Attributes:
        provider: Source tag or host of the service involved, if known.
        status: HTTP status code, if a response was received.
    """
    
    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status: int | None = None,
        details: dict | None = None
    ) -> None:
        super().__init__(message, details)
        self.provider = provider
        self.status = status


class AudioUnavailableError(SpotAudioError):
    """
    Raised when every audio source failed for a track.
    
    This is the only failure that crosses the acquisition pipeline's public
    boundary. The message is meant to be shown to the end user as-is.
    
    Attributes:
        track_name: Title of the requested track.
        artist: Artist of the requested track.
    """
    
    def __init__(self, track_name: str, artist: str, details: dict | None = None) -> None:
        message = (
            f"Could not find audio for \"{artist} - {track_name}\". "
            f"The track may not be available yet or differs across platforms."
        )
        super().__init__(message, details)
        self.track_name = track_name
        self.artist = artist


class TranscodeError(SpotAudioError):
    """
    Raised when ffmpeg fails, times out or exceeds the output-size ceiling.
    
    The transcoder catches this internally to drive its minimal-args retry
    and raw-buffer fallback; it is never raised to the caller of
    Transcoder.transcode().
    """
    pass


class MetadataError(SpotAudioError):
    """
    Raised when a source URL cannot be resolved to track metadata.
    
    Common causes:
        - URL is not a Spotify track URL
        - Spotify credentials are missing or rejected
        - Track not found
    """
    pass


class ExternalToolError(SpotAudioError):
    """
    Raised when an external binary (ffmpeg, ffprobe, fpcalc) fails.
    
    Covers a missing binary, a non-zero exit status, a timeout and an
    output larger than the allowed ceiling.
    
    Attributes:
        tool: Name of the binary.
    """
    
    def __init__(self, message: str, tool: str, details: dict | None = None) -> None:
        super().__init__(message, details)
        self.tool = tool
