"""Capability clients used by the pipeline coordinator.

Each client wraps one external capability behind a small async contract and
keeps call metrics. The transport underneath is either HTTP or simulated.
"""

import logging
import time
from dataclasses import dataclass

from tarjuman.audio.segmenter import AudioSegment
from tarjuman.models.schemas import TranscriptionResult, TranslationResult

logger = logging.getLogger("tarjuman.clients")


class _MeteredClient:
    def __init__(self, transport):
        self.transport = transport
        self._metrics = {
            "requests": 0,
            "successes": 0,
            "failures": 0,
            "total_latency_ms": 0.0,
        }

    @property
    def metrics(self) -> dict:
        m = dict(self._metrics)
        m["avg_latency_ms"] = (
            round(m["total_latency_ms"] / m["successes"], 1) if m["successes"] else 0.0
        )
        return m

    async def _call(self, coro):
        self._metrics["requests"] += 1
        t0 = time.monotonic()
        try:
            result = await coro
        except Exception:
            self._metrics["failures"] += 1
            raise
        self._metrics["successes"] += 1
        self._metrics["total_latency_ms"] += (time.monotonic() - t0) * 1000
        return result


class TranscriptionClient(_MeteredClient):
    async def transcribe(self, segment: AudioSegment, language: str) -> TranscriptionResult:
        result = await self._call(self.transport.transcribe(segment.to_wav(), language))
        logger.debug(f"Segment {segment.sequence} transcribed: {result.text[:60]!r}")
        return result


class TranslationClient(_MeteredClient):
    async def translate(self, text: str, source: str, target: str) -> TranslationResult:
        if not text.strip():
            return TranslationResult(
                translated_text="", confidence=0.0,
                source_language=source, target_language=target,
            )
        return await self._call(self.transport.translate(text, source, target))


class SpeechSynthesisClient(_MeteredClient):
    async def synthesize(self, text: str, language: str) -> bytes:
        return await self._call(self.transport.synthesize(text, language))


@dataclass
class ClientBundle:
    """The three clients of one run, sharing one transport."""
    transcription: TranscriptionClient
    translation: TranslationClient
    synthesis: SpeechSynthesisClient
    transport: object

    @classmethod
    def from_transport(cls, transport) -> "ClientBundle":
        return cls(
            transcription=TranscriptionClient(transport),
            translation=TranslationClient(transport),
            synthesis=SpeechSynthesisClient(transport),
            transport=transport,
        )

    def metrics(self) -> dict:
        return {
            "transcription": self.transcription.metrics,
            "translation": self.translation.metrics,
            "synthesis": self.synthesis.metrics,
        }

    async def close(self):
        await self.transport.close()
