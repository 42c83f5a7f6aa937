"""Tests for tarjuman.audio.segmenter — fixed-size slicing, capture lifecycle, WAV output."""

import io
import wave

import numpy as np
import pytest

from tarjuman.audio.segmenter import AudioSegment, AudioSegmenter
from tarjuman.config import AudioConfig
from tarjuman.pipeline.errors import AudioDeviceError, AudioFailure


@pytest.fixture
def started(segmenter, source_factory):
    """Segmenter with 100-sample segments, capturing, collecting segments."""
    segments = []
    segmenter.initialize("default", volume=0.8)
    segmenter.on_segment(segments.append)
    segmenter.start()
    return segmenter, source_factory.current, segments


# ---------------------------------------------------------------------------
# Slicing
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestSlicing:
    def test_segment_size_follows_rate_and_duration(self):
        seg = AudioSegmenter(AudioConfig(sample_rate=16000, chunk_duration_ms=2500))
        assert seg.segment_size == 40000

    def test_each_segment_has_exact_length(self, started):
        segmenter, source, segments = started
        source.push(np.zeros(350))
        assert len(segments) == 3
        assert all(len(s.samples) == 100 for s in segments)
        assert segmenter.status().buffered_sample_count == 50

    def test_concatenation_matches_truncated_input(self, started):
        _, source, segments = started
        rng = np.random.default_rng(7)
        data = rng.uniform(-1, 1, 1234).astype(np.float32)
        pos = 0
        for size in (1, 17, 99, 100, 101, 250, 3, 663):
            source.push(data[pos:pos + size])
            pos += size
        assert pos == len(data)

        joined = np.concatenate([s.samples for s in segments])
        assert len(joined) == 1200
        np.testing.assert_array_equal(joined, data[:1200])

    def test_sequence_numbers_increase(self, started):
        _, source, segments = started
        source.push(np.zeros(300))
        assert [s.sequence for s in segments] == [0, 1, 2]

    def test_nothing_emitted_below_threshold(self, started):
        _, source, segments = started
        source.push(np.zeros(99))
        assert segments == []

    def test_segment_samples_are_read_only(self, started):
        _, source, segments = started
        source.push(np.ones(100))
        with pytest.raises(ValueError):
            segments[0].samples[0] = 0.5


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestCallbacks:
    def test_failing_callback_does_not_block_others(self, started):
        segmenter, source, segments = started

        def boom(segment):
            raise RuntimeError("callback failed")

        segmenter.on_segment(boom)
        later = []
        segmenter.on_segment(later.append)
        source.push(np.zeros(200))
        assert len(segments) == 2
        assert len(later) == 2
        assert segmenter.status().buffered_sample_count == 0

    def test_remove_callback(self, started):
        segmenter, source, segments = started
        segmenter.remove_callback(segments.append)
        source.push(np.zeros(100))
        assert segments == []


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestLifecycle:
    def test_samples_dropped_while_stopped(self, started):
        segmenter, source, segments = started
        segmenter.stop()
        segmenter.feed(np.zeros(500, dtype=np.float32))
        assert segments == []
        assert segmenter.samples_dropped == 500

    def test_stop_is_idempotent(self, started):
        segmenter, source, _ = started
        segmenter.stop()
        segmenter.stop()
        assert not segmenter.status().capturing

    def test_start_clears_previous_buffer(self, started):
        segmenter, source, segments = started
        source.push(np.zeros(60))
        segmenter.stop()
        segmenter.start()
        source.push(np.zeros(60))
        assert segments == []
        assert segmenter.status().buffered_sample_count == 60

    def test_status_reports_device_and_volume(self, started):
        segmenter, _, _ = started
        status = segmenter.status()
        assert status.initialized is True
        assert status.capturing is True
        assert status.device == "default"
        assert status.volume == pytest.approx(0.8)

    def test_status_not_capturing_when_source_dies(self, started):
        segmenter, source, _ = started
        source.active = False
        assert segmenter.status().capturing is False

    def test_initialize_error_propagates(self, segmenter, source_factory):
        source_factory.fail_with = AudioDeviceError("denied", AudioFailure.PERMISSION_DENIED)
        with pytest.raises(AudioDeviceError) as exc:
            segmenter.initialize("default")
        assert exc.value.failure == AudioFailure.PERMISSION_DENIED
        assert segmenter.status().initialized is False

    def test_start_before_initialize_raises(self, segmenter):
        with pytest.raises(RuntimeError):
            segmenter.start()

    def test_close_releases_source_and_callbacks(self, started):
        segmenter, source, segments = started
        segmenter.close()
        assert source.closed == 1
        assert segmenter.status().initialized is False
        segmenter.initialize("default")
        segmenter.start()
        segmenter.feed(np.zeros(100, dtype=np.float32))
        assert segments == []

    def test_reinitialize_passes_new_device_and_volume(self, segmenter, source_factory):
        segmenter.initialize("default", 0.5)
        segmenter.initialize("3", 2.0)
        assert source_factory.calls == [("default", 0.5), ("3", 1.0)]
        assert source_factory.sources[0].closed == 1


# ---------------------------------------------------------------------------
# WAV serialization
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestToWav:
    def test_header_and_length(self):
        seg = AudioSegment(samples=np.zeros(1600, dtype=np.float32), sample_rate=16000, sequence=0)
        with wave.open(io.BytesIO(seg.to_wav()), "rb") as wav:
            assert wav.getnchannels() == 1
            assert wav.getsampwidth() == 2
            assert wav.getframerate() == 16000
            assert wav.getnframes() == 1600
        assert seg.duration == pytest.approx(0.1)

    def test_samples_are_clipped(self):
        seg = AudioSegment(
            samples=np.array([2.0, -2.0, 0.0], dtype=np.float32), sample_rate=8000, sequence=0,
        )
        with wave.open(io.BytesIO(seg.to_wav()), "rb") as wav:
            pcm = np.frombuffer(wav.readframes(3), dtype="<i2")
        assert list(pcm) == [32767, -32768, 0]
