"""Tests for tarjuman.pipeline.errors — classification, user messages, failure tracking."""

import httpx
import pytest

from tarjuman.pipeline.errors import (
    AudioDeviceError, AudioFailure, AuthError, ErrorKind, FailureTracker, NetworkError,
    RateLimitError, SynthesisPlaybackError, UnknownError, classify_error, is_retryable,
    message_for_kind, user_message,
)


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://backend/api/translate")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


# ---------------------------------------------------------------------------
# classify_error
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestClassifyError:
    @pytest.mark.parametrize("error,kind", [
        (AuthError("x"), ErrorKind.AUTH),
        (RateLimitError("x"), ErrorKind.RATE_LIMIT),
        (NetworkError("x"), ErrorKind.NETWORK),
        (AudioDeviceError("x"), ErrorKind.AUDIO_DEVICE),
        (SynthesisPlaybackError("x"), ErrorKind.PLAYBACK),
        (UnknownError("x"), ErrorKind.UNKNOWN),
        (ValueError("x"), ErrorKind.UNKNOWN),
        (ConnectionResetError("x"), ErrorKind.NETWORK),
        (TimeoutError("x"), ErrorKind.NETWORK),
    ])
    def test_exception_types(self, error, kind):
        assert classify_error(error) == kind

    @pytest.mark.parametrize("code,kind", [
        (401, ErrorKind.AUTH),
        (403, ErrorKind.AUTH),
        (429, ErrorKind.RATE_LIMIT),
        (502, ErrorKind.NETWORK),
        (503, ErrorKind.NETWORK),
        (504, ErrorKind.NETWORK),
        (500, ErrorKind.UNKNOWN),
        (400, ErrorKind.UNKNOWN),
    ])
    def test_http_status(self, code, kind):
        assert classify_error(_status_error(code)) == kind

    def test_httpx_transport_errors(self):
        assert classify_error(httpx.ConnectError("refused")) == ErrorKind.NETWORK
        assert classify_error(httpx.ReadTimeout("slow")) == ErrorKind.NETWORK

    def test_permanent_kinds(self):
        assert not is_retryable(ErrorKind.AUTH)
        assert not is_retryable(ErrorKind.AUDIO_DEVICE)
        assert not is_retryable(ErrorKind.PLAYBACK)
        assert is_retryable(ErrorKind.NETWORK)
        assert is_retryable(ErrorKind.RATE_LIMIT)
        assert is_retryable(ErrorKind.UNKNOWN)


# ---------------------------------------------------------------------------
# user_message
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestUserMessage:
    def test_auth(self):
        assert "credentials" in user_message(AuthError("401"))

    def test_audio_failures_are_distinct(self):
        messages = {
            user_message(AudioDeviceError("x", failure))
            for failure in AudioFailure
        }
        assert len(messages) == len(AudioFailure)

    def test_mic_in_use(self, mic_in_use):
        assert user_message(mic_in_use) == "Microphone in use by another application"

    def test_no_internal_details(self):
        msg = user_message(RuntimeError("Traceback: secret internals"))
        assert "secret" not in msg

    def test_message_for_kind(self):
        assert message_for_kind("network") == user_message(NetworkError("x"))
        assert "Microphone" in message_for_kind(ErrorKind.AUDIO_DEVICE)


# ---------------------------------------------------------------------------
# FailureTracker
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestFailureTracker:
    def test_counts_per_kind_and_context(self):
        t = FailureTracker()
        t.track(ErrorKind.NETWORK, "translation")
        t.track(ErrorKind.NETWORK, "translation")
        t.track(ErrorKind.NETWORK, "tts")
        assert t.count("network", "translation") == 2
        assert t.count(ErrorKind.NETWORK, "tts") == 1

    def test_trips_above_threshold(self):
        t = FailureTracker(threshold=5)
        for _ in range(5):
            t.track(ErrorKind.AUDIO_DEVICE, "audio_capture")
        assert t.tripped() is None
        t.track(ErrorKind.AUDIO_DEVICE, "audio_capture")
        assert t.tripped() == ("audio_device", "audio_capture")

    def test_reset_one_and_all(self):
        t = FailureTracker()
        t.track(ErrorKind.NETWORK, "translation")
        t.track(ErrorKind.AUTH, "tts")
        t.reset(ErrorKind.NETWORK, "translation")
        assert t.count(ErrorKind.NETWORK, "translation") == 0
        assert t.count(ErrorKind.AUTH, "tts") == 1
        t.reset()
        assert t.snapshot() == {}

    def test_snapshot(self):
        t = FailureTracker()
        t.track(ErrorKind.UNKNOWN, "translation")
        assert t.snapshot() == {"unknown:translation": 1}
