"""
Fixed-duration audio segmentation.

Receives a continuous stream of float32 mono samples from an AudioSource
(usually on the PortAudio thread), buffers them, and emits one AudioSegment
every time the buffer holds a full segment's worth of samples.

Unlike a VAD segmenter there are no speech boundaries here: every segment is
exactly sample_rate * chunk_duration_ms / 1000 samples long.
"""

import io
import logging
import threading
import time
import wave
from dataclasses import dataclass, field
from typing import Callable, Protocol

import numpy as np

from tarjuman.config import AudioConfig
from tarjuman.models.schemas import SegmenterStatus

logger = logging.getLogger("tarjuman.audio")


@dataclass(frozen=True)
class AudioSegment:
    """One slice of captured audio. Samples are read-only."""
    samples: np.ndarray
    sample_rate: int
    sequence: int
    captured_at: float = field(default_factory=time.monotonic)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def to_wav(self) -> bytes:
        """Serialize as 16-bit mono PCM WAV (samples clipped to [-1, 1])."""
        clipped = np.clip(self.samples, -1.0, 1.0)
        pcm = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF).astype("<i2")
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(self.sample_rate)
            wav.writeframes(pcm.tobytes())
        return buf.getvalue()


class AudioSource(Protocol):
    """Platform audio input. open() raises AudioDeviceError on failure."""

    def open(self, on_samples: Callable[[np.ndarray], None]) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...

    @property
    def active(self) -> bool: ...


SourceFactory = Callable[[str, float], AudioSource]


class AudioSegmenter:
    """
    Accumulates incoming samples and emits fixed-size AudioSegments.

    Usage:
        segmenter = AudioSegmenter(config, source_factory)
        segmenter.initialize("default", volume=0.8)
        segmenter.on_segment(my_callback)
        segmenter.start()
        ...
        segmenter.stop()

    Threading: feed() runs on the audio thread. The buffer is guarded by a
    lock; callbacks run on the audio thread, outside the lock, and must hand
    work off (the coordinator uses loop.call_soon_threadsafe).
    """

    def __init__(self, config: AudioConfig | None = None, source_factory: SourceFactory | None = None):
        self.config = config or AudioConfig()
        self._source_factory = source_factory
        self._source: AudioSource | None = None
        self._callbacks: list[Callable[[AudioSegment], None]] = []

        self._lock = threading.Lock()
        self._buffer = np.zeros(0, dtype=np.float32)
        self._capturing = False
        self._sequence = 0

        self.device = "default"
        self.volume = 1.0

        # Stats
        self.segments_emitted = 0
        self.samples_dropped = 0

    @property
    def segment_size(self) -> int:
        return self.config.samples_per_segment

    def initialize(self, device: str = "default", volume: float = 1.0):
        """Open the input device. Raises AudioDeviceError; never retries."""
        if self._source is not None:
            self.close()
        self.device = device
        self.volume = max(0.0, min(1.0, volume))
        if self._source_factory is None:
            raise RuntimeError("AudioSegmenter has no audio source factory")
        source = self._source_factory(device, self.volume)
        source.open(self.feed)
        self._source = source
        logger.info(f"Audio input ready: device={device} volume={self.volume:.2f}")

    def start(self):
        if self._source is None:
            raise RuntimeError("Audio capture not initialized")
        with self._lock:
            self._buffer = np.zeros(0, dtype=np.float32)
            self._capturing = True
        self._source.start()

    def stop(self):
        """Stop capturing. Safe to call any number of times."""
        with self._lock:
            if not self._capturing:
                return
            self._capturing = False
        if self._source is not None:
            try:
                self._source.stop()
            except Exception as e:
                logger.warning(f"Error stopping audio input: {e}")

    def close(self):
        """Stop and release the device, buffer and callbacks."""
        self.stop()
        if self._source is not None:
            try:
                self._source.close()
            except Exception as e:
                logger.warning(f"Error closing audio input: {e}")
            self._source = None
        with self._lock:
            self._buffer = np.zeros(0, dtype=np.float32)
        self._callbacks.clear()

    def on_segment(self, callback: Callable[[AudioSegment], None]):
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[AudioSegment], None]):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def feed(self, samples: np.ndarray):
        """Append samples; emit every complete segment, oldest samples first."""
        ready: list[AudioSegment] = []
        with self._lock:
            if not self._capturing:
                self.samples_dropped += len(samples)
                return
            self._buffer = np.concatenate(
                [self._buffer, np.asarray(samples, dtype=np.float32).ravel()]
            )
            size = self.segment_size
            while len(self._buffer) >= size:
                chunk = self._buffer[:size].copy()
                chunk.setflags(write=False)
                self._buffer = self._buffer[size:]
                ready.append(AudioSegment(
                    samples=chunk,
                    sample_rate=self.config.sample_rate,
                    sequence=self._sequence,
                ))
                self._sequence += 1

        for segment in ready:
            self.segments_emitted += 1
            for callback in list(self._callbacks):
                try:
                    callback(segment)
                except Exception as e:
                    logger.error(f"Error in audio segment callback: {e}", exc_info=True)

    def status(self) -> SegmenterStatus:
        source_active = self._source is not None and self._source.active
        with self._lock:
            buffered = len(self._buffer)
            capturing = self._capturing
        return SegmenterStatus(
            capturing=capturing and source_active,
            initialized=self._source is not None,
            buffered_sample_count=buffered,
            device=self.device,
            volume=self.volume,
        )
