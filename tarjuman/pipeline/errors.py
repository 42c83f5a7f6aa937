"""Error taxonomy, classification and failure tracking for the pipeline."""

import logging
from enum import Enum

import httpx

logger = logging.getLogger("tarjuman.errors")


class ErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    AUDIO_DEVICE = "audio_device"
    PLAYBACK = "playback"
    UNKNOWN = "unknown"


class AudioFailure(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    IN_USE = "in_use"
    OTHER = "other"


class PipelineError(Exception):
    """Base class for errors raised by pipeline components."""
    kind = ErrorKind.UNKNOWN


class AuthError(PipelineError):
    kind = ErrorKind.AUTH


class RateLimitError(PipelineError):
    kind = ErrorKind.RATE_LIMIT

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class NetworkError(PipelineError):
    kind = ErrorKind.NETWORK


class AudioDeviceError(PipelineError):
    kind = ErrorKind.AUDIO_DEVICE

    def __init__(self, message: str, failure: AudioFailure = AudioFailure.OTHER):
        super().__init__(message)
        self.failure = failure


class SynthesisPlaybackError(PipelineError):
    kind = ErrorKind.PLAYBACK


class UnknownError(PipelineError):
    kind = ErrorKind.UNKNOWN


# Errors that are never worth another attempt
_PERMANENT_KINDS = (ErrorKind.AUTH, ErrorKind.AUDIO_DEVICE, ErrorKind.PLAYBACK)

_USER_MESSAGES = {
    ErrorKind.AUTH: "Please check your credentials in the extension settings",
    ErrorKind.RATE_LIMIT: "API rate limit exceeded. Please wait a moment and try again",
    ErrorKind.NETWORK: "Network connection failed. Please check your internet connection",
    ErrorKind.PLAYBACK: "Could not play the translated audio",
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again",
}

_AUDIO_MESSAGES = {
    AudioFailure.PERMISSION_DENIED: "Microphone permission denied. Please allow microphone access",
    AudioFailure.NOT_FOUND: "Microphone device not found. Please check your audio settings",
    AudioFailure.IN_USE: "Microphone in use by another application",
    AudioFailure.OTHER: "Microphone error. Please check your audio settings",
}


def classify_error(error: BaseException) -> ErrorKind:
    """Map any exception onto an ErrorKind."""
    if isinstance(error, PipelineError):
        return error.kind
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (401, 403):
            return ErrorKind.AUTH
        if status == 429:
            return ErrorKind.RATE_LIMIT
        if status in (502, 503, 504):
            return ErrorKind.NETWORK
        return ErrorKind.UNKNOWN
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorKind.NETWORK
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def is_retryable(kind: ErrorKind) -> bool:
    return kind not in _PERMANENT_KINDS


def user_message(error: BaseException) -> str:
    """Human-readable text for the overlay. Internal details stay in the logs."""
    if isinstance(error, AudioDeviceError):
        return _AUDIO_MESSAGES[error.failure]
    return _USER_MESSAGES.get(classify_error(error), _USER_MESSAGES[ErrorKind.UNKNOWN])


class FailureTracker:
    """Counts failures per (error kind, context) since the last reset."""

    def __init__(self, threshold: int = 5):
        self.threshold = threshold
        self._counts: dict[tuple[str, str], int] = {}

    def track(self, kind: ErrorKind | str, context: str) -> int:
        key = (ErrorKind(kind).value, context)
        count = self._counts.get(key, 0) + 1
        self._counts[key] = count
        if count == self.threshold + 1:
            logger.warning(f"Too many {key[0]} errors in {context} ({count})")
        return count

    def count(self, kind: ErrorKind | str, context: str) -> int:
        return self._counts.get((ErrorKind(kind).value, context), 0)

    def reset(self, kind: ErrorKind | str | None = None, context: str | None = None):
        """Reset one pair, or everything when called without arguments."""
        if kind is None and context is None:
            self._counts.clear()
            return
        self._counts.pop((ErrorKind(kind).value, context), None)

    def tripped(self) -> tuple[str, str] | None:
        """Return the first (kind, context) whose count exceeds the threshold."""
        for key, count in self._counts.items():
            if count > self.threshold:
                return key
        return None

    def snapshot(self) -> dict[str, int]:
        return {f"{kind}:{context}": n for (kind, context), n in self._counts.items()}


def message_for_kind(kind: ErrorKind | str) -> str:
    kind = ErrorKind(kind)
    if kind == ErrorKind.AUDIO_DEVICE:
        return _AUDIO_MESSAGES[AudioFailure.OTHER]
    return _USER_MESSAGES.get(kind, _USER_MESSAGES[ErrorKind.UNKNOWN])
