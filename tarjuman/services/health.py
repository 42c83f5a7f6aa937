"""Startup and runtime health checks, and the capture watchdog."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

import httpx

from tarjuman.config import AppConfig
from tarjuman.models.schemas import PipelineState
from tarjuman.pipeline.errors import AudioDeviceError, message_for_kind

logger = logging.getLogger("tarjuman.health")


class ComponentStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class HealthCheck:
    component: str
    status: ComponentStatus
    message: str = ""
    latency_ms: float = 0.0


@dataclass
class SystemHealth:
    checks: list[HealthCheck] = field(default_factory=list)
    overall: ComponentStatus = ComponentStatus.OK

    def add(self, check: HealthCheck):
        self.checks.append(check)
        if check.status == ComponentStatus.DOWN:
            self.overall = ComponentStatus.DOWN
        elif check.status == ComponentStatus.DEGRADED and self.overall != ComponentStatus.DOWN:
            self.overall = ComponentStatus.DEGRADED

    def to_dict(self) -> dict:
        return {
            "status": self.overall.value,
            "components": {
                c.component: {
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": round(c.latency_ms, 1),
                }
                for c in self.checks
            },
        }


async def check_backend(config: AppConfig, simulated: bool) -> HealthCheck:
    """Check the proxy backend answers GET /health."""
    if simulated:
        return HealthCheck("backend", ComponentStatus.OK, "Simulated mode - backend not used")
    url = f"{config.backend.base_url}{config.backend.health_path}"
    start = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            latency = (time.monotonic() - start) * 1000
            return HealthCheck("backend", ComponentStatus.OK, f"Reachable at {config.backend.base_url}", latency)
    except httpx.ConnectError:
        return HealthCheck("backend", ComponentStatus.DOWN,
                           f"Cannot connect to backend at {config.backend.base_url}. Is it running?")
    except Exception as e:
        return HealthCheck("backend", ComponentStatus.DOWN, str(e))


async def check_ffmpeg() -> HealthCheck:
    """Check ffmpeg is installed (needed to play MP3 speech from the backend)."""
    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            "ffmpeg", "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=5)
        latency = (time.monotonic() - start) * 1000

        if proc.returncode == 0:
            version_line = stdout.decode().split("\n")[0] if stdout else "unknown"
            return HealthCheck("ffmpeg", ComponentStatus.OK, version_line, latency)
        return HealthCheck("ffmpeg", ComponentStatus.DEGRADED, "ffmpeg returned non-zero exit code")
    except FileNotFoundError:
        return HealthCheck("ffmpeg", ComponentStatus.DEGRADED,
                           "ffmpeg not found in PATH - backend speech cannot be played")
    except Exception as e:
        return HealthCheck("ffmpeg", ComponentStatus.DEGRADED, str(e))


def check_capture(coordinator) -> HealthCheck:
    """Compare what the coordinator believes with what the segmenter reports."""
    status = coordinator.segmenter.status()
    if coordinator.state == PipelineState.IDLE:
        return HealthCheck("capture", ComponentStatus.OK, "Idle")
    if coordinator.state == PipelineState.ERROR:
        return HealthCheck("capture", ComponentStatus.DOWN, coordinator.status_text)
    if not status.initialized or not status.capturing:
        return HealthCheck("capture", ComponentStatus.DEGRADED, "Capture stalled")
    return HealthCheck("capture", ComponentStatus.OK,
                       f"Capturing from {status.device}, {status.buffered_sample_count} samples buffered")


def check_worker(coordinator) -> HealthCheck:
    metrics = coordinator.metrics
    if not coordinator.running:
        return HealthCheck("worker", ComponentStatus.OK, "Not running")
    if not metrics["worker_alive"]:
        return HealthCheck("worker", ComponentStatus.DOWN, "Segment worker has exited")
    return HealthCheck("worker", ComponentStatus.OK, f"{metrics['queue_depth']} segment(s) queued")


async def run_startup_checks(config: AppConfig) -> SystemHealth:
    """Run startup checks. Logs results and returns health status."""
    health = SystemHealth()

    logger.info("Running startup health checks...")

    health.add(await check_backend(config, simulated=config.defaults.simulated_mode))
    if config.audio.playback_enabled:
        health.add(await check_ffmpeg())

    for check in health.checks:
        if check.status == ComponentStatus.OK:
            logger.info(f"  [{check.status.value}] {check.component}: {check.message}")
        elif check.status == ComponentStatus.DEGRADED:
            logger.warning(f"  [{check.status.value}] {check.component}: {check.message}")
        else:
            logger.error(f"  [{check.status.value}] {check.component}: {check.message}")

    logger.info(f"Startup health: {health.overall.value}")
    return health


_runtime_cache: dict = {"backend": None, "simulated": None, "timestamp": 0.0}
_RUNTIME_CACHE_TTL = 15.0  # seconds


async def run_runtime_checks(coordinator) -> SystemHealth:
    """Health of the live pipeline (for the /health endpoint).

    The backend check is cached for 15 seconds so frequent polling does not
    hit the network every time.
    """
    health = SystemHealth()
    simulated = coordinator.settings.simulated_mode if coordinator.settings else \
        coordinator.config.defaults.simulated_mode

    now = time.monotonic()
    cached = _runtime_cache["backend"]
    if (cached is None or _runtime_cache["simulated"] != simulated
            or (now - _runtime_cache["timestamp"]) >= _RUNTIME_CACHE_TTL):
        cached = await check_backend(coordinator.config, simulated)
        _runtime_cache["simulated"] = simulated
        _runtime_cache["backend"] = cached
        _runtime_cache["timestamp"] = now
    health.add(cached)

    health.add(check_capture(coordinator))
    health.add(check_worker(coordinator))
    return health


class HealthMonitor:
    """Capture watchdog.

    Every interval, while the pipeline is not idle:
    - a (kind, context) failure count above the threshold halts the pipeline
      with one terminal error and no restart;
    - otherwise, if capture has stalled (segmenter not initialized or not
      capturing while the coordinator thinks it is) or an earlier start
      left the pipeline in Error, the pipeline is stopped, given a short
      cooldown and started again. Each failed start is counted, so a dead
      device trips the threshold and halts on a later check.
    """

    def __init__(self, coordinator, interval: float = 30.0, cooldown: float = 1.0,
                 sleep=asyncio.sleep):
        self.coordinator = coordinator
        self.interval = interval
        self.cooldown = cooldown
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.restarts = 0
        self.halts = 0

    async def check_once(self) -> str:
        """Run one check. Returns what was done: idle/ok/halted/restarted/skipped."""
        coord = self.coordinator
        if coord.state == PipelineState.IDLE:
            return "idle"
        if coord.terminal:
            return "skipped"

        tripped = coord.failures.tripped()
        if tripped:
            kind, context = tripped
            self.halts += 1
            logger.error(f"Too many {kind} failures in {context}, stopping pipeline")
            await coord.halt(
                kind,
                f"{message_for_kind(kind)}. Translation stopped after repeated failures",
            )
            return "halted"

        status = coord.segmenter.status()
        if coord.running:
            if status.initialized and status.capturing:
                return "ok"
        elif coord.state != PipelineState.ERROR:
            return "ok"

        self.restarts += 1
        logger.warning(
            f"Capture not healthy (initialized={status.initialized}, "
            f"capturing={status.capturing}, state={coord.state.value}), restarting"
        )
        try:
            await coord.restart(self.cooldown)
        except AudioDeviceError as e:
            # Counted by the coordinator; the next check may halt
            logger.error(f"Restart failed: {e}")
        return "restarted"

    async def run(self):
        """Background loop. Cancel the task to stop it."""
        while True:
            await self._sleep(self.interval)
            try:
                await self.check_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Health monitor error: {e}", exc_info=True)

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
