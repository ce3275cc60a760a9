"""
Typed stage outcomes for the acquisition pipeline.

Each pipeline stage returns either Ok(value) or Failure(reason, detail)
instead of raising. The waterfall decides whether to fall through based
on the typed reason, and the reason is what ends up in the logs.

Usage:
    result = await source.attempt(track, prefer_lossless=True)
    if isinstance(result, Failure):
        logger.info(f"{source.name} skipped: {result}")
    else:
        audio = result.value
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union


T = TypeVar("T")


class FailureReason(str, Enum):
    """Why a stage (and therefore a provider attempt) gave up."""
    SESSION_UNAVAILABLE = "session_unavailable"
    IDENTITY_NOT_FOUND = "identity_not_found"
    IDENTITY_MISMATCH = "identity_mismatch"
    NO_USABLE_TIER = "no_usable_tier"
    STREAM_UNAVAILABLE = "stream_unavailable"
    FETCH_FAILED = "fetch_failed"
    EMPTY_PAYLOAD = "empty_payload"
    DECRYPT_FAILED = "decrypt_failed"
    HOST_NOT_ALLOWED = "host_not_allowed"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful stage outcome."""
    value: T
    
    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """
    Failed stage outcome.
    
    Attributes:
        reason: Typed failure category.
        detail: Free-form context for the log line.
    """
    reason: FailureReason
    detail: str = ""
    
    @property
    def ok(self) -> bool:
        return False
    
    def __str__(self) -> str:
        if self.detail:
            return f"{self.reason.value}: {self.detail}"
        return self.reason.value


Result = Union[Ok[T], Failure]
