"""Shared pytest fixtures for Tarjuman tests."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from tarjuman.audio.segmenter import AudioSegmenter
from tarjuman.clients.services import ClientBundle
from tarjuman.config import AppConfig, AudioConfig, SimulatedConfig
from tarjuman.models.schemas import PipelineSettings, TranscriptionResult, TranslationResult
from tarjuman.pipeline.errors import AudioDeviceError, AudioFailure
from tarjuman.pipeline.orchestrator import PipelineCoordinator


class FakeSource:
    """In-memory AudioSource: tests push samples by hand."""

    def __init__(self, fail_with: AudioDeviceError | None = None):
        self.fail_with = fail_with
        self.on_samples = None
        self.active = False
        self.opened = 0
        self.started = 0
        self.closed = 0

    def open(self, on_samples):
        if self.fail_with is not None:
            raise self.fail_with
        self.opened += 1
        self.on_samples = on_samples

    def start(self):
        self.started += 1
        self.active = True

    def stop(self):
        self.active = False

    def close(self):
        self.closed += 1
        self.active = False
        self.on_samples = None

    def push(self, samples):
        self.on_samples(np.asarray(samples, dtype=np.float32))


class SourceFactory:
    """Hands out one FakeSource per initialize(); remembers them all."""

    def __init__(self):
        self.sources: list[FakeSource] = []
        self.fail_with: AudioDeviceError | None = None
        self.calls: list[tuple[str, float]] = []

    def __call__(self, device: str, volume: float) -> FakeSource:
        self.calls.append((device, volume))
        src = FakeSource(self.fail_with)
        self.sources.append(src)
        return src

    @property
    def current(self) -> FakeSource:
        return self.sources[-1]


class RecordingSink:
    """ResultSink that keeps every event."""

    def __init__(self):
        self.events = []

    async def send(self, event):
        self.events.append(event)

    def of_type(self, type_: str) -> list:
        return [e for e in self.events if e.type == type_]

    @property
    def results(self):
        return self.of_type("translation_result")

    @property
    def errors(self):
        return self.of_type("translation_error")

    @property
    def statuses(self):
        return [e.status for e in self.of_type("status")]


class FakePlayer:
    def __init__(self):
        self.played: list[tuple[bytes, float]] = []
        self.stopped = 0
        self.fail_with: Exception | None = None

    async def play(self, audio: bytes, volume: float):
        if self.fail_with is not None:
            raise self.fail_with
        self.played.append((audio, volume))

    def stop(self):
        self.stopped += 1


async def wait_until(predicate, timeout: float = 2.0):
    """Poll until predicate() is true or fail after timeout seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def app_config(tmp_path):
    """Small segments (100 samples) and instant simulated services."""
    return AppConfig(
        data_dir=tmp_path,
        settings_path=tmp_path / "settings.json",
        audio=AudioConfig(sample_rate=1000, chunk_duration_ms=100, playback_enabled=False),
        simulated=SimulatedConfig(transcribe_delay=0, translate_delay=0, synthesize_delay=0),
    )


@pytest.fixture
def source_factory():
    return SourceFactory()


@pytest.fixture
def segmenter(app_config, source_factory):
    return AudioSegmenter(app_config.audio, source_factory)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def player():
    return FakePlayer()


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def settings():
    return PipelineSettings(simulated_mode=False)


@pytest.fixture
def fake_clients():
    """ClientBundle whose three clients are AsyncMocks with happy-path defaults."""
    transcription = MagicMock()
    transcription.transcribe = AsyncMock(return_value=TranscriptionResult(
        text="مرحبا، كيف حالك؟", detected_language="ar", confidence=0.95,
    ))
    translation = MagicMock()
    translation.translate = AsyncMock(return_value=TranslationResult(
        translated_text="Hello, how are you?", confidence=0.9,
        source_language="ar", target_language="en",
    ))
    synthesis = MagicMock()
    synthesis.synthesize = AsyncMock(return_value=b"RIFF-audio")
    transport = MagicMock()
    transport.close = AsyncMock()
    bundle = ClientBundle(
        transcription=transcription, translation=translation,
        synthesis=synthesis, transport=transport,
    )
    bundle.metrics = MagicMock(return_value={})
    return bundle


@pytest.fixture
def coordinator(app_config, segmenter, player, sink, settings, fake_clients, no_sleep):
    """Coordinator wired to fakes; retries and cooldowns do not wait."""
    return PipelineCoordinator(
        app_config,
        segmenter=segmenter,
        player=player,
        sink=sink,
        settings_provider=lambda: settings,
        clients_factory=lambda s: fake_clients,
        sleep=no_sleep,
    )


@pytest.fixture
def mic_in_use():
    return AudioDeviceError("Device unavailable [PaErrorCode -9985]", AudioFailure.IN_USE)


@pytest.fixture
def wait():
    return wait_until
