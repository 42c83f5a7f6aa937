"""Tarjuman — live speech interpreter for Middle-Eastern languages."""

import logging
import logging.handlers
import os
import time as _time
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, WebSocket
from starlette.requests import Request

from tarjuman.audio.devices import build_player, build_source_factory
from tarjuman.audio.segmenter import AudioSegmenter
from tarjuman.config import load_config
from tarjuman.pipeline.orchestrator import PipelineCoordinator
from tarjuman.routes._state import (
    set_config, set_coordinator, set_health_monitor, set_settings_store,
)
from tarjuman.routes.api_pipeline import pipeline_router
from tarjuman.routes.api_settings import settings_router
from tarjuman.routes.api_system import system_router
from tarjuman.routes.websocket import get_broadcaster, overlay_endpoint
from tarjuman.services.health import (
    ComponentStatus, HealthMonitor, run_runtime_checks, run_startup_checks,
)
from tarjuman.services.settings_store import SettingsStore

# Logging: structured with file rotation
_log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
_log_dir = Path(os.getenv("LOG_DIR", "data"))
_log_dir.mkdir(parents=True, exist_ok=True)

# Console handler (human-readable)
_console = logging.StreamHandler()
_console.setFormatter(logging.Formatter(
    "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
))
_console.setLevel(_log_level)

# Rotating file handler (full detail, 10MB x 5 files)
_file_handler = logging.handlers.RotatingFileHandler(
    _log_dir / "tarjuman.log",
    maxBytes=10 * 1024 * 1024,
    backupCount=5,
    encoding="utf-8",
)
_file_handler.setFormatter(logging.Formatter(
    "%(asctime)s [%(name)s] %(levelname)s: %(message)s  [%(filename)s:%(lineno)d]",
))
_file_handler.setLevel(logging.DEBUG)

# Error-only file
_error_handler = logging.handlers.RotatingFileHandler(
    _log_dir / "tarjuman_errors.log",
    maxBytes=5 * 1024 * 1024,
    backupCount=3,
    encoding="utf-8",
)
_error_handler.setFormatter(logging.Formatter(
    "%(asctime)s [%(name)s] %(levelname)s: %(message)s  [%(filename)s:%(lineno)d]",
))
_error_handler.setLevel(logging.ERROR)

logging.basicConfig(level=logging.DEBUG, handlers=[_console, _file_handler, _error_handler])
logger = logging.getLogger("tarjuman")

coordinator: PipelineCoordinator | None = None
app_config = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    global coordinator, app_config
    config = load_config()
    app_config = config
    set_config(config)

    store = SettingsStore(config.settings_path, config.defaults)
    set_settings_store(store)
    settings = store.get()

    logger.info("=" * 50)
    logger.info("  Tarjuman — Starting up")
    logger.info(f"  Languages: {settings.source_language} -> {settings.target_language}"
                f" (bidirectional={settings.bidirectional_mode})")
    logger.info(f"  Backend: {'simulated' if settings.simulated_mode else config.backend.base_url}")
    logger.info(f"  Audio: {config.audio.source}, {config.audio.chunk_duration_ms}ms segments")
    logger.info("=" * 50)

    startup_health = await run_startup_checks(config)
    if startup_health.overall == ComponentStatus.DOWN:
        logger.warning("Some components are DOWN. Server will start in degraded mode.")

    segmenter = AudioSegmenter(config.audio, build_source_factory(config.audio))
    coordinator = PipelineCoordinator(
        config,
        segmenter=segmenter,
        player=build_player(config.audio),
        sink=get_broadcaster(),
        settings_provider=store.get,
    )
    set_coordinator(coordinator)

    monitor = HealthMonitor(
        coordinator,
        interval=config.health.interval_seconds,
        cooldown=config.health.restart_cooldown_seconds,
    )
    set_health_monitor(monitor)
    monitor.start()

    yield

    logger.info("Shutting down...")
    await monitor.stop()
    await coordinator.stop()
    logger.info("Shutdown complete.")


app = FastAPI(
    title="Tarjuman",
    description="Live speech interpreter for Middle-Eastern languages",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(pipeline_router)
app.include_router(settings_router)
app.include_router(system_router)

# Slow request logging middleware
_SLOW_REQUEST_THRESHOLD = float(os.getenv("SLOW_REQUEST_THRESHOLD", "5.0"))
_TIMING_EXCLUDED_PATHS = {"/health", "/ws/overlay"}


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    if request.url.path in _TIMING_EXCLUDED_PATHS:
        return await call_next(request)
    start = _time.monotonic()
    response = await call_next(request)
    duration = _time.monotonic() - start
    if duration > _SLOW_REQUEST_THRESHOLD:
        logger.warning(
            f"Slow request: {request.method} {request.url.path} "
            f"took {duration:.2f}s (threshold: {_SLOW_REQUEST_THRESHOLD}s)"
        )
    response.headers["X-Request-Duration-Ms"] = str(round(duration * 1000))
    return response


@app.websocket("/ws/overlay")
async def ws_overlay(websocket: WebSocket):
    await overlay_endpoint(websocket)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    if coordinator is None:
        return {"status": "starting", "components": {}}
    health = await run_runtime_checks(coordinator)
    result = health.to_dict()
    result["pipeline"] = {
        "state": coordinator.state.value,
        "status": coordinator.status_text,
        "overlays": get_broadcaster().client_count,
    }
    return result


def run():
    """Console entry point."""
    config = load_config()
    uvicorn.run("tarjuman.main:app", host=config.host, port=config.port)


if __name__ == "__main__":
    run()
