"""Platform audio: microphone input and translated-speech output.

Input and output go through the `sounddevice` package (PortAudio). The
package is imported when a device is actually opened so the pipeline can be
built and tested without an audio backend.
"""

import asyncio
import io
import logging
import threading
import time
import wave
from typing import Callable, Optional, Protocol

import numpy as np

from tarjuman.config import AudioConfig
from tarjuman.pipeline.errors import AudioDeviceError, AudioFailure, SynthesisPlaybackError

logger = logging.getLogger("tarjuman.audio")


def _import_sounddevice():
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise AudioDeviceError(
            f"sounddevice is unavailable: {e}", AudioFailure.NOT_FOUND
        ) from e
    return sd


def resolve_device(selector: str) -> Optional[int | str]:
    """'default' -> None, numeric ids -> int, anything else is a device name."""
    if not selector or selector == "default":
        return None
    if selector.isdigit():
        return int(selector)
    return selector


def classify_device_error(error: Exception) -> AudioFailure:
    msg = str(error).lower()
    if any(p in msg for p in ("permission", "not allowed", "access denied", "denied")):
        return AudioFailure.PERMISSION_DENIED
    if any(p in msg for p in ("unavailable", "busy", "in use", "exclusive")):
        return AudioFailure.IN_USE
    if any(p in msg for p in ("no input device", "invalid device", "error querying device",
                              "not found", "no such device")):
        return AudioFailure.NOT_FOUND
    return AudioFailure.OTHER


def list_input_devices() -> list[dict]:
    sd = _import_sounddevice()
    devices = []
    for idx, dev in enumerate(sd.query_devices()):
        if dev.get("max_input_channels", 0) > 0:
            devices.append({
                "id": str(idx),
                "name": dev.get("name", ""),
                "default_samplerate": dev.get("default_samplerate"),
            })
    return devices


# --- Input ---

class SoundDeviceSource:
    """Live microphone input; pushes gain-adjusted float32 blocks to on_samples."""

    def __init__(self, config: AudioConfig, device: str = "default", volume: float = 1.0):
        self.config = config
        self.device = device
        self.gain = max(0.0, min(1.0, volume))
        self._stream = None
        self._on_samples: Callable[[np.ndarray], None] | None = None

    def open(self, on_samples: Callable[[np.ndarray], None]) -> None:
        sd = _import_sounddevice()
        self._on_samples = on_samples
        try:
            self._stream = sd.InputStream(
                samplerate=self.config.sample_rate,
                channels=self.config.channels,
                dtype="float32",
                device=resolve_device(self.device),
                blocksize=0,  # let PortAudio choose
                callback=self._callback,
            )
        except Exception as e:
            failure = classify_device_error(e)
            logger.error(f"Failed to open microphone '{self.device}' ({failure.value}): {e}")
            raise AudioDeviceError(f"Failed to open microphone: {e}", failure) from e

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.debug(f"Input stream status: {status}")
        if self._on_samples is None:
            return
        mono = indata[:, 0] if indata.ndim > 1 else indata
        self._on_samples(mono.astype(np.float32) * self.gain)

    def start(self) -> None:
        if self._stream is not None:
            try:
                self._stream.start()
            except Exception as e:
                raise AudioDeviceError(f"Failed to start microphone: {e}", classify_device_error(e)) from e

    def stop(self) -> None:
        if self._stream is not None and self._stream.active:
            self._stream.stop()

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        self._on_samples = None

    @property
    def active(self) -> bool:
        return self._stream is not None and bool(self._stream.active)


class SyntheticSource:
    """Feeds a quiet tone in real time from a background thread (headless runs)."""

    def __init__(self, config: AudioConfig, device: str = "default", volume: float = 1.0,
                 block_seconds: float = 0.1, frequency: float = 220.0):
        self.config = config
        self.gain = max(0.0, min(1.0, volume))
        self.block_seconds = block_seconds
        self.frequency = frequency
        self._on_samples: Callable[[np.ndarray], None] | None = None
        self._thread: threading.Thread | None = None
        self._running = threading.Event()
        self._phase = 0

    def open(self, on_samples: Callable[[np.ndarray], None]) -> None:
        self._on_samples = on_samples

    def _next_block(self) -> np.ndarray:
        n = int(self.config.sample_rate * self.block_seconds)
        t = (np.arange(n) + self._phase) / self.config.sample_rate
        self._phase += n
        return (0.05 * self.gain * np.sin(2 * np.pi * self.frequency * t)).astype(np.float32)

    def _run(self):
        while self._running.is_set():
            if self._on_samples is not None:
                self._on_samples(self._next_block())
            time.sleep(self.block_seconds)

    def start(self) -> None:
        if self._running.is_set():
            return
        self._running.set()
        self._thread = threading.Thread(target=self._run, name="synthetic-audio", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._running.clear()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None

    def close(self) -> None:
        self.stop()
        self._on_samples = None

    @property
    def active(self) -> bool:
        return self._running.is_set()


def build_source_factory(config: AudioConfig) -> Callable[[str, float], object]:
    """Factory handed to the AudioSegmenter, chosen once from config."""
    if config.source == "synthetic":
        return lambda device, volume: SyntheticSource(config, device, volume)
    return lambda device, volume: SoundDeviceSource(config, device, volume)


# --- Output ---

class AudioSink(Protocol):
    async def play(self, audio: bytes, volume: float) -> None: ...

    def stop(self) -> None: ...


def decode_wav(audio: bytes) -> tuple[np.ndarray, int]:
    """Decode 16-bit PCM WAV bytes to float32 samples and a sample rate."""
    with wave.open(io.BytesIO(audio), "rb") as wav:
        rate = wav.getframerate()
        channels = wav.getnchannels()
        frames = wav.readframes(wav.getnframes())
    samples = np.frombuffer(frames, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        samples = samples.reshape(-1, channels).mean(axis=1)
    return samples, rate


async def transcode_to_wav(audio: bytes, sample_rate: int = 22050) -> bytes:
    """Convert compressed audio (the backend returns MP3) to WAV with ffmpeg."""
    proc = await asyncio.create_subprocess_exec(
        "ffmpeg", "-hide_banner", "-loglevel", "error",
        "-i", "pipe:0",
        "-ar", str(sample_rate), "-ac", "1", "-f", "wav", "pipe:1",
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate(audio)
    if proc.returncode != 0:
        err = stderr.decode(errors="replace")[-300:]
        raise SynthesisPlaybackError(f"ffmpeg decode failed: {err}")
    return stdout


class SoundDevicePlayer:
    """Plays one clip at a time; a new clip stops the one still playing."""

    def __init__(self):
        self.clips_played = 0

    async def play(self, audio: bytes, volume: float) -> None:
        volume = max(0.0, min(1.0, volume))
        try:
            if not audio.startswith(b"RIFF"):
                audio = await transcode_to_wav(audio)
            samples, rate = decode_wav(audio)
            sd = _import_sounddevice()
            sd.stop()
            sd.play(samples * volume, rate)
            self.clips_played += 1
        except SynthesisPlaybackError:
            raise
        except Exception as e:
            raise SynthesisPlaybackError(f"Audio playback failed: {e}") from e

    def stop(self) -> None:
        try:
            sd = _import_sounddevice()
            sd.stop()
        except Exception as e:
            logger.debug(f"Error stopping playback: {e}")


class NullPlayer:
    """Playback disabled: remembers what would have played."""

    def __init__(self):
        self.played: list[tuple[int, float]] = []

    async def play(self, audio: bytes, volume: float) -> None:
        self.played.append((len(audio), max(0.0, min(1.0, volume))))

    def stop(self) -> None:
        pass


def build_player(config: AudioConfig) -> AudioSink:
    return SoundDevicePlayer() if config.playback_enabled else NullPlayer()
