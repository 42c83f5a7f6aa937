"""Pipeline coordinator: drives every audio segment through the interpreter stages."""

import asyncio
import logging
import time
from functools import partial
from typing import Awaitable, Callable, Protocol

from tarjuman.audio.devices import AudioSink
from tarjuman.audio.segmenter import AudioSegment, AudioSegmenter
from tarjuman.clients.services import ClientBundle
from tarjuman.clients.transport import build_transport
from tarjuman.config import AppConfig
from tarjuman.models.languages import AUTO_LANGUAGE
from tarjuman.models.schemas import (
    ErrorEvent, PipelineSettings, PipelineState, StatusEvent, TranslationEvent,
)
from tarjuman.pipeline.direction import detect_language, needs_translation, resolve_direction
from tarjuman.pipeline.errors import (
    AudioDeviceError, ErrorKind, FailureTracker, classify_error, user_message,
)
from tarjuman.pipeline.retry import BackoffRetrier

logger = logging.getLogger("tarjuman.pipeline")

Event = TranslationEvent | ErrorEvent | StatusEvent


class ResultSink(Protocol):
    """Where results, errors and status changes are delivered (the overlay)."""

    async def send(self, event: Event) -> None: ...


class PipelineAlreadyRunning(RuntimeError):
    pass


_STATUS_TEXT = {
    PipelineState.IDLE: "Idle",
    PipelineState.CAPTURING: "Capturing",
    PipelineState.PROCESSING: "Processing…",
}


class PipelineCoordinator:
    """Manages one live interpreting run:
    Segmenter -> Transcription -> Direction -> Translation -> Synthesis -> Playback -> Sink

    Lifecycle:
    - Created once during app lifespan (main.py). Stored in routes._state.
    - start() snapshots settings, opens the microphone and starts the worker.
    - stop() closes the microphone, cancels the worker and returns to Idle.
    - restart() is stop() + cooldown + start() without resetting failure counts
      (used by the HealthMonitor).

    Concurrency:
    - Segments arrive on the audio thread and are handed to the event loop with
      call_soon_threadsafe into a bounded queue. When the queue is full the
      oldest pending segment is dropped.
    - A single worker task processes one segment at a time, so results reach
      the sink in capture order.
    - Every run has an epoch number. Segments and results tagged with an older
      epoch are discarded.

    Error contract:
    - start() raises PipelineAlreadyRunning, or AudioDeviceError when the
      microphone cannot be opened (state becomes Error).
    - A stage that exhausts its retries produces one ErrorEvent and the worker
      moves on to the next segment.
    - A playback failure is logged only; the result event is still sent.
    """

    def __init__(
        self,
        config: AppConfig,
        segmenter: AudioSegmenter,
        player: AudioSink,
        sink: ResultSink | None = None,
        settings_provider: Callable[[], PipelineSettings] | None = None,
        clients_factory: Callable[[PipelineSettings], ClientBundle] | None = None,
        retrier: BackoffRetrier | None = None,
        failures: FailureTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.segmenter = segmenter
        self.player = player
        self.sink = sink
        self._settings_provider = settings_provider or (lambda: config.defaults)
        self._clients_factory = clients_factory or (
            lambda settings: ClientBundle.from_transport(build_transport(settings, config))
        )
        self.retrier = retrier or BackoffRetrier(config.retry, sleep=sleep)
        self.failures = failures or FailureTracker(config.health.failure_threshold)
        self._sleep = sleep

        # Run state
        self.state = PipelineState.IDLE
        self.status_text = _STATUS_TEXT[PipelineState.IDLE]
        self.settings: PipelineSettings | None = None
        self.epoch = 0
        self.last_error: str | None = None
        self.terminal = False  # set by halt(), cleared by the next start()
        self._clients: ClientBundle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[tuple[int, AudioSegment]] = asyncio.Queue(
            maxsize=config.pipeline.queue_capacity
        )
        self._worker_task: asyncio.Task | None = None
        self._lifecycle_lock = asyncio.Lock()

        self._metrics = {
            "segments_received": 0,
            "segments_dropped": 0,
            "segments_processed": 0,
            "empty_transcripts": 0,
            "skipped_translations": 0,
            "translations_completed": 0,
            "pipeline_errors": 0,
            "playback_errors": 0,
            "stale_results": 0,
            "peak_queue_depth": 0,
            "restarts": 0,
        }

    @property
    def metrics(self) -> dict:
        """Snapshot of runtime metrics including current queue state."""
        return {
            **self._metrics,
            "queue_depth": self._queue.qsize(),
            "worker_alive": self._worker_task is not None and not self._worker_task.done(),
            "retry": self.retrier.metrics,
            "clients": self._clients.metrics() if self._clients else {},
            "failures": self.failures.snapshot(),
        }

    @property
    def running(self) -> bool:
        return self.state in (PipelineState.CAPTURING, PipelineState.PROCESSING)

    def set_sink(self, sink: ResultSink | None):
        self.sink = sink

    # --- Lifecycle ---

    async def start(self, reset_failures: bool = True):
        """Idle/Error -> Capturing. Settings are read once here."""
        async with self._lifecycle_lock:
            if self.running:
                raise PipelineAlreadyRunning("Pipeline already running")
            await self._start_locked(reset_failures)

    async def _start_locked(self, reset_failures: bool):
        self._loop = asyncio.get_running_loop()
        if reset_failures:
            self.failures.reset()

        settings = self._settings_provider()
        self.settings = settings
        self.terminal = False
        self.epoch += 1
        epoch = self.epoch
        self._queue = asyncio.Queue(maxsize=self.config.pipeline.queue_capacity)
        self._clients = self._clients_factory(settings)

        try:
            self.segmenter.initialize(settings.mic_device, settings.volume)
            self.segmenter.on_segment(partial(self._on_segment, epoch))
            self.segmenter.start()
        except AudioDeviceError as e:
            self.failures.track(ErrorKind.AUDIO_DEVICE, "audio_capture")
            logger.error(f"Failed to start audio capture: {e}")
            self.segmenter.close()
            await self._close_clients()
            self.last_error = user_message(e)
            await self._emit(ErrorEvent(
                error_kind=ErrorKind.AUDIO_DEVICE.value, message=self.last_error,
            ))
            await self._set_state(PipelineState.ERROR, self.last_error)
            raise

        self._worker_task = asyncio.create_task(self._process_queue(epoch))
        self.last_error = None
        logger.info(
            f"Pipeline started (epoch {epoch}): {settings.source_language}->{settings.target_language}"
            f" bidirectional={settings.bidirectional_mode} simulated={settings.simulated_mode}"
        )
        await self._set_state(PipelineState.CAPTURING)

    async def stop(self):
        """Any state -> Idle. Safe to call when already idle."""
        async with self._lifecycle_lock:
            if self.state == PipelineState.IDLE and self._worker_task is None:
                return
            await self._teardown()
            logger.info(f"Pipeline stopped (epoch {self.epoch}) metrics={self._metrics}")
            await self._set_state(PipelineState.IDLE)

    async def restart(self, cooldown: float | None = None):
        """Stop, wait, start again. Failure counters are kept."""
        if cooldown is None:
            cooldown = self.config.health.restart_cooldown_seconds
        self._metrics["restarts"] += 1
        logger.warning("Restarting pipeline")
        await self.stop()
        await self._sleep(cooldown)
        async with self._lifecycle_lock:
            if self.running:
                return
            await self._start_locked(reset_failures=False)

    async def halt(self, error_kind: str, message: str):
        """Stop for good after repeated failures: one terminal error, state Error."""
        async with self._lifecycle_lock:
            await self._teardown()
            self.last_error = message
            self.terminal = True
            logger.error(f"Pipeline halted: {error_kind}: {message}")
            await self._emit(ErrorEvent(error_kind=error_kind, message=message, terminal=True))
            await self._set_state(PipelineState.ERROR, message)

    async def _teardown(self):
        # Bumping the epoch invalidates anything still in flight
        self.epoch += 1
        self.segmenter.close()

        if self._worker_task is not None:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        if dropped:
            logger.info(f"Discarded {dropped} pending segment(s)")

        self.player.stop()
        await self._close_clients()

    async def _close_clients(self):
        if self._clients is not None:
            try:
                await self._clients.close()
            except Exception as e:
                logger.warning(f"Error closing backend clients: {e}")
            self._clients = None

    # --- Segment intake ---

    def _on_segment(self, epoch: int, segment: AudioSegment):
        """Audio-thread callback: hand the segment to the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._enqueue, epoch, segment)
        except RuntimeError:
            # Loop shut down between the check and the call
            logger.debug("Event loop closed, dropping segment")

    def _enqueue(self, epoch: int, segment: AudioSegment):
        if epoch != self.epoch:
            return
        self._metrics["segments_received"] += 1
        if self._queue.full():
            _, old = self._queue.get_nowait()
            self._metrics["segments_dropped"] += 1
            logger.warning(f"Segment queue full, dropping segment {old.sequence}")
        self._queue.put_nowait((epoch, segment))
        depth = self._queue.qsize()
        if depth > self._metrics["peak_queue_depth"]:
            self._metrics["peak_queue_depth"] = depth

    async def _process_queue(self, epoch: int):
        """Background worker: one segment at a time, in capture order."""
        while True:
            try:
                seg_epoch, segment = await self._queue.get()
                if seg_epoch != self.epoch:
                    continue
                await self._set_state(PipelineState.PROCESSING)
                try:
                    await self.process_segment(segment, seg_epoch)
                finally:
                    if seg_epoch == self.epoch and self.running:
                        await self._set_state(PipelineState.CAPTURING)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Queue worker error: {e}", exc_info=True)

    # --- Per-segment pipeline ---

    def _stale(self, epoch: int) -> bool:
        if epoch != self.epoch:
            self._metrics["stale_results"] += 1
            return True
        return False

    async def process_segment(self, segment: AudioSegment, epoch: int) -> TranslationEvent | None:
        """Run one segment through the stages. Returns the emitted result, if any."""
        settings = self.settings
        clients = self._clients
        if settings is None or clients is None:
            return None
        t0 = time.monotonic()
        self._metrics["segments_processed"] += 1
        context = "transcription"
        hint = AUTO_LANGUAGE if settings.auto_detect_language else settings.source_language
        try:
            transcription = await self.retrier.retry(
                lambda: clients.transcription.transcribe(segment, hint),
                context="transcription",
            )
            text = transcription.text.strip()
            if not text:
                self._metrics["empty_transcripts"] += 1
                return None
            if self._stale(epoch):
                return None

            if settings.auto_detect_language:
                source = detect_language(text)
            else:
                source = settings.source_language
            target = settings.target_language
            if settings.bidirectional_mode:
                source, target = resolve_direction(
                    source, settings.source_language, settings.target_language,
                )

            if not needs_translation(text, target):
                self._metrics["skipped_translations"] += 1
                logger.debug(f"Segment {segment.sequence} already in {target}, skipping")
                return None

            context = "translation"
            translation = await self.retrier.retry(
                lambda: clients.translation.translate(text, source, target),
                context="translation",
            )
            if self._stale(epoch):
                return None

            context = "tts"
            audio = await self.retrier.retry(
                lambda: clients.synthesis.synthesize(translation.translated_text, target),
                context="tts",
            )
            if self._stale(epoch):
                return None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._report_failure(e, context, epoch)
            return None

        try:
            await self.player.play(audio, settings.volume)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._metrics["playback_errors"] += 1
            logger.warning(f"Playback failed for segment {segment.sequence}: {e}")

        if self._stale(epoch):
            return None
        event = TranslationEvent(
            original_text=text,
            translated_text=translation.translated_text,
            source_language=source,
            target_language=target,
            confidence=transcription.confidence,
            bidirectional=settings.bidirectional_mode,
            sequence=segment.sequence,
        )
        self._metrics["translations_completed"] += 1
        logger.info(
            f"Segment {segment.sequence} {source}->{target} in "
            f"{(time.monotonic() - t0) * 1000:.0f}ms: '{text[:60]}'"
        )
        await self._emit(event)
        return event

    async def _report_failure(self, error: Exception, context: str, epoch: int):
        kind = classify_error(error)
        self._metrics["pipeline_errors"] += 1
        self.failures.track(kind, context)
        logger.error(f"Segment failed in {context} ({kind.value}): {error}", exc_info=True)
        if self._stale(epoch):
            return
        self.last_error = user_message(error)
        await self._emit(ErrorEvent(error_kind=kind.value, message=self.last_error))

    # --- Sink ---

    async def _set_state(self, state: PipelineState, detail: str | None = None):
        self.state = state
        if state == PipelineState.ERROR:
            self.status_text = f"Error: {detail or 'unknown'}"
        else:
            self.status_text = _STATUS_TEXT[state]
        await self._emit(StatusEvent(
            status=self.status_text,
            state=state,
            queue_depth=self._queue.qsize(),
            detail=detail,
        ))

    async def _emit(self, event: Event):
        if self.sink is None:
            return
        try:
            await self.sink.send(event)
        except Exception as e:
            logger.error(f"Result sink error: {e}")
