"""Backend transports: the real HTTP proxy and a simulated stand-in.

Both expose the same four coroutines (transcribe, translate, synthesize,
health). The pipeline picks one of them once per run via build_transport().
"""

import asyncio
import io
import logging
import wave

import httpx
import numpy as np

from tarjuman.config import AppConfig, BackendConfig, SimulatedConfig
from tarjuman.models.languages import (
    AUTO_LANGUAGE,
    SIMULATED_ENGLISH_TRANSLATION,
    SIMULATED_TRANSCRIPTIONS,
)
from tarjuman.models.schemas import PipelineSettings, TranscriptionResult, TranslationResult
from tarjuman.pipeline.errors import (
    AuthError, NetworkError, RateLimitError, UnknownError,
)

logger = logging.getLogger("tarjuman.clients")


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _raise_for_status(response: httpx.Response, context: str):
    """Translate an error response into the pipeline's error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    detail = response.text[:200]
    if status in (401, 403):
        raise AuthError(f"{context}: authentication failed ({status})")
    if status == 429:
        raise RateLimitError(
            f"{context}: rate limited",
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )
    if status in (502, 503, 504):
        raise NetworkError(f"{context}: backend unavailable ({status})")
    raise UnknownError(f"{context}: backend error {status}: {detail}")


class HttpTransport:
    """Talks to the proxy backend over HTTP."""

    def __init__(self, config: BackendConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(
                connect=5.0,
                read=config.timeout_seconds,
                write=5.0,
                pool=5.0,
            ),
        )

    async def _post(self, path: str, context: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.post(path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{context}: request timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{context}: {e}") from e
        if response.status_code >= 400:
            logger.error(f"Backend {context} error {response.status_code}: {response.text[:200]}")
        _raise_for_status(response, context)
        return response

    @staticmethod
    def _json(response: httpx.Response, context: str) -> dict:
        try:
            return response.json()
        except ValueError as e:
            raise UnknownError(f"{context}: malformed response") from e

    async def transcribe(self, wav: bytes, language: str) -> TranscriptionResult:
        response = await self._post(
            self.config.transcribe_path, "transcription",
            files={"audio": ("audio.wav", wav, "audio/wav")},
            data={} if language == AUTO_LANGUAGE else {"language": language},
        )
        data = self._json(response, "transcription")
        fallback = "ar" if language == AUTO_LANGUAGE else language
        return TranscriptionResult(
            text=data.get("text") or "",
            detected_language=data.get("language") or fallback,
            confidence=min(1.0, max(0.0, float(data.get("confidence", 0.0)))),
        )

    async def translate(self, text: str, source: str, target: str) -> TranslationResult:
        response = await self._post(
            self.config.translate_path, "translation",
            json={"text": text, "sourceLanguage": source, "targetLanguage": target},
        )
        data = self._json(response, "translation")
        return TranslationResult(
            translated_text=data.get("translatedText") or "",
            confidence=float(data.get("confidence", 0.0)),
            source_language=data.get("sourceLanguage") or source,
            target_language=data.get("targetLanguage") or target,
        )

    async def synthesize(self, text: str, language: str) -> bytes:
        response = await self._post(
            self.config.synthesize_path, "tts",
            json={"text": text, "language": language},
        )
        return response.content

    async def health(self) -> dict:
        """Check the backend liveness endpoint. Never raises."""
        try:
            response = await self.client.get(self.config.health_path, timeout=5.0)
            response.raise_for_status()
            data = response.json()
        except Exception as e:
            logger.warning(f"Backend health check failed: {e}")
            return {"backend": False, "translation": False, "tts": False, "error": str(e)}
        services = data.get("services", {}) if isinstance(data, dict) else {}
        return {
            "backend": True,
            "translation": bool(services.get("translation", services.get("deepl", True))),
            "tts": bool(services.get("tts", services.get("elevenlabs", True))),
        }

    async def close(self):
        await self.client.aclose()


def beep_wav(text: str, sample_rate: int = 22050, frequency: float = 440.0) -> bytes:
    """A 440 Hz tone whose length follows the text (0.1 s per char, max 3 s)."""
    duration = min(len(text) * 0.1, 3.0)
    n = int(sample_rate * duration)
    t = np.arange(n) / sample_rate
    pcm = (0.1 * np.sin(2 * np.pi * frequency * t) * 0x7FFF).astype("<i2")
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm.tobytes())
    return buf.getvalue()


class SimulatedTransport:
    """Deterministic canned responses after a fixed delay; no network."""

    def __init__(self, config: SimulatedConfig | None = None, sleep=asyncio.sleep):
        self.config = config or SimulatedConfig()
        self._sleep = sleep

    async def transcribe(self, wav: bytes, language: str) -> TranscriptionResult:
        await self._sleep(self.config.transcribe_delay)
        if language == AUTO_LANGUAGE:
            language = "ar"
        text = SIMULATED_TRANSCRIPTIONS.get(language, SIMULATED_TRANSCRIPTIONS["ar"])
        return TranscriptionResult(text=text, detected_language=language, confidence=0.95)

    async def translate(self, text: str, source: str, target: str) -> TranslationResult:
        await self._sleep(self.config.translate_delay)
        if target == "en":
            translated = SIMULATED_ENGLISH_TRANSLATION
        else:
            translated = SIMULATED_TRANSCRIPTIONS.get(target, SIMULATED_ENGLISH_TRANSLATION)
        return TranslationResult(
            translated_text=translated if text else "",
            confidence=0.9,
            source_language=source,
            target_language=target,
        )

    async def synthesize(self, text: str, language: str) -> bytes:
        await self._sleep(self.config.synthesize_delay)
        return beep_wav(text)

    async def health(self) -> dict:
        return {"mock_mode": True}

    async def close(self):
        pass


def build_transport(settings: PipelineSettings, config: AppConfig):
    """Choose the transport for one pipeline run."""
    if settings.simulated_mode:
        logger.info("Using simulated backend")
        return SimulatedTransport(config.simulated)
    logger.info(f"Using backend at {config.backend.base_url}")
    return HttpTransport(config.backend)
