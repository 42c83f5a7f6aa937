"""Data schemas for Tarjuman."""

from datetime import datetime, UTC
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tarjuman.models.languages import SUPPORTED_LANGUAGES


# --- Settings snapshot ---

class PipelineSettings(BaseModel):
    """User settings read once at pipeline start. Immutable for a run."""
    model_config = ConfigDict(frozen=True)

    source_language: str = "ar"
    target_language: str = "en"
    simulated_mode: bool = True
    volume: float = 0.8
    bidirectional_mode: bool = False
    auto_detect_language: bool = True
    mic_device: str = "default"

    @field_validator("source_language", "target_language")
    @classmethod
    def _known_language(cls, v: str) -> str:
        if v not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported language: {v}")
        return v

    @field_validator("volume")
    @classmethod
    def _clamp_volume(cls, v: float) -> float:
        return max(0.0, min(1.0, v))


# --- Pipeline state ---

class PipelineState(str, Enum):
    IDLE = "Idle"
    CAPTURING = "Capturing"
    PROCESSING = "Processing"
    ERROR = "Error"


class SegmenterStatus(BaseModel):
    capturing: bool = False
    initialized: bool = False
    buffered_sample_count: int = 0
    device: str = "default"
    volume: float = 1.0


# --- Capability results ---

class TranscriptionResult(BaseModel):
    text: str
    detected_language: str = "ar"
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class TranslationResult(BaseModel):
    translated_text: str
    confidence: float = 0.0
    source_language: str
    target_language: str


# --- Result sink events ---

class TranslationEvent(BaseModel):
    """One successfully translated segment."""
    type: str = "translation_result"
    original_text: str
    translated_text: str
    source_language: str
    target_language: str
    confidence: float = 0.0
    bidirectional: bool = False
    sequence: int = 0
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())


class ErrorEvent(BaseModel):
    """User-facing failure. Never carries stack traces."""
    type: str = "translation_error"
    error_kind: str
    message: str
    terminal: bool = False


class StatusEvent(BaseModel):
    type: str = "status"
    status: str
    state: PipelineState
    queue_depth: int = 0
    detail: Optional[str] = None


class SettingsUpdate(BaseModel):
    """Partial settings change; unset fields keep their stored value."""
    source_language: Optional[str] = None
    target_language: Optional[str] = None
    simulated_mode: Optional[bool] = None
    volume: Optional[float] = None
    bidirectional_mode: Optional[bool] = None
    auto_detect_language: Optional[bool] = None
    mic_device: Optional[str] = None
