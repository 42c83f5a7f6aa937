"""Tarjuman configuration — all settings in one place."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from tarjuman.models.schemas import PipelineSettings

# Load .env from the project root (one level up from tarjuman/)
load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger("tarjuman.config")


class AudioConfig(BaseModel):
    """Microphone capture and playback settings."""
    sample_rate: int = Field(default=16000, gt=0)
    channels: int = 1
    chunk_duration_ms: int = Field(default=2500, gt=0)  # one segment = 2.5s of audio
    source: str = "microphone"  # or "synthetic" for headless runs
    playback_enabled: bool = True

    @property
    def samples_per_segment(self) -> int:
        return int(self.sample_rate * (self.chunk_duration_ms / 1000))

    @model_validator(mode="after")
    def _segment_holds_a_sample(self):
        if self.samples_per_segment < 1:
            raise ValueError(
                f"chunk_duration_ms={self.chunk_duration_ms} is shorter than one sample "
                f"at {self.sample_rate} Hz"
            )
        return self


class RetryConfig(BaseModel):
    """Exponential backoff for calls to the backend."""
    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0
    # Rate limits start from a longer first wait
    rate_limit_initial_delay: float = 5.0
    # Retry budgets used when the caller does not pass max_attempts
    kind_budgets: dict[str, int] = Field(default_factory=lambda: {
        "network": 5,
        "rate_limit": 3,
        "unknown": 2,
    })


class BackendConfig(BaseModel):
    """Proxy backend that fronts the speech, translation and TTS services."""
    base_url: str = "http://localhost:3000"
    transcribe_path: str = "/api/transcribe"
    translate_path: str = "/api/translate"
    synthesize_path: str = "/api/synthesize"
    health_path: str = "/health"
    timeout_seconds: float = 30.0


class SimulatedConfig(BaseModel):
    """Artificial latency of the simulated clients (seconds)."""
    transcribe_delay: float = 1.0
    translate_delay: float = 0.8
    synthesize_delay: float = 0.5


class PipelineConfig(BaseModel):
    """Segment queue between capture and processing."""
    queue_capacity: int = Field(default=2, ge=1)  # oldest pending segment is dropped on overflow


class HealthConfig(BaseModel):
    """Capture watchdog settings."""
    interval_seconds: float = 30.0
    restart_cooldown_seconds: float = 1.0
    failure_threshold: int = 5  # trips when a (kind, context) count exceeds this


class AppConfig(BaseModel):
    """Root configuration."""
    host: str = "0.0.0.0"
    port: int = 8003
    data_dir: Path = Path("data")
    settings_path: Path = Path("data/settings.json")

    audio: AudioConfig = AudioConfig()
    retry: RetryConfig = RetryConfig()
    backend: BackendConfig = BackendConfig()
    simulated: SimulatedConfig = SimulatedConfig()
    pipeline: PipelineConfig = PipelineConfig()
    health: HealthConfig = HealthConfig()
    defaults: PipelineSettings = PipelineSettings()


def _env_flag(value: str) -> bool:
    return value.lower() in ("1", "true", "yes", "on")


def load_config() -> AppConfig:
    """Load config with environment variable overrides."""
    config = AppConfig()

    if url := os.getenv("TARJUMAN_BACKEND_URL"):
        config.backend.base_url = url.rstrip("/")
    if timeout := os.getenv("BACKEND_TIMEOUT"):
        try:
            config.backend.timeout_seconds = float(timeout)
        except ValueError:
            logger.warning(f"Ignoring invalid BACKEND_TIMEOUT={timeout!r}")
    if source := os.getenv("AUDIO_SOURCE"):
        if source in ("microphone", "synthetic"):
            config.audio.source = source
        else:
            logger.warning(f"Ignoring unknown AUDIO_SOURCE={source!r}")
    if chunk := os.getenv("CHUNK_DURATION_MS"):
        try:
            config.audio = AudioConfig(**{**config.audio.model_dump(), "chunk_duration_ms": int(chunk)})
        except ValueError:
            logger.warning(f"Ignoring invalid CHUNK_DURATION_MS={chunk!r}")
    if playback := os.getenv("PLAYBACK_ENABLED"):
        config.audio.playback_enabled = _env_flag(playback)
    if interval := os.getenv("HEALTH_INTERVAL"):
        try:
            config.health.interval_seconds = float(interval)
        except ValueError:
            logger.warning(f"Ignoring invalid HEALTH_INTERVAL={interval!r}")
    if capacity := os.getenv("QUEUE_CAPACITY"):
        try:
            config.pipeline.queue_capacity = max(1, int(capacity))
        except ValueError:
            logger.warning(f"Ignoring invalid QUEUE_CAPACITY={capacity!r}")
    if data := os.getenv("DATA_DIR"):
        config.data_dir = Path(data)
        config.settings_path = config.data_dir / "settings.json"
    if host := os.getenv("HOST"):
        config.host = host
    if port := os.getenv("PORT"):
        try:
            config.port = int(port)
        except ValueError:
            logger.warning(f"Ignoring invalid PORT={port!r}")

    # Ensure data directory exists
    config.data_dir.mkdir(parents=True, exist_ok=True)

    return config
