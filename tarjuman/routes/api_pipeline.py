"""Pipeline control routes: start, stop, status."""

import logging

from fastapi import APIRouter, HTTPException

from tarjuman.pipeline.errors import AudioDeviceError, user_message
from tarjuman.pipeline.orchestrator import PipelineAlreadyRunning
import tarjuman.routes._state as _state

logger = logging.getLogger("tarjuman.api")

pipeline_router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])


def _require_coordinator():
    if not _state._coordinator:
        raise HTTPException(503, "Pipeline not initialized")
    return _state._coordinator


def pipeline_status(coordinator) -> dict:
    settings = coordinator.settings
    if settings is None and _state._settings_store is not None:
        settings = _state._settings_store.get()
    status = {
        "state": coordinator.state.value,
        "status": coordinator.status_text,
        "epoch": coordinator.epoch,
        "queue_depth": coordinator.metrics["queue_depth"],
        "last_error": coordinator.last_error,
        "segmenter": coordinator.segmenter.status().model_dump(),
        "settings": settings.model_dump() if settings else None,
        "metrics": coordinator.metrics,
    }
    monitor = _state._health_monitor
    if monitor is not None:
        status["watchdog"] = {"restarts": monitor.restarts, "halts": monitor.halts}
    return status


@pipeline_router.post("/start")
async def start_pipeline():
    """Start capturing and translating. 409 if already running, 503 if the mic fails.

    Side effects: resets the failure counters.
    """
    coordinator = _require_coordinator()
    try:
        await coordinator.start()
    except PipelineAlreadyRunning:
        raise HTTPException(409, "Pipeline already running")
    except AudioDeviceError as e:
        raise HTTPException(503, user_message(e))
    return pipeline_status(coordinator)


@pipeline_router.post("/stop")
async def stop_pipeline():
    """Stop the pipeline. Always 200; stopping an idle pipeline is a no-op."""
    coordinator = _require_coordinator()
    await coordinator.stop()
    return pipeline_status(coordinator)


@pipeline_router.get("/status")
async def get_pipeline_status():
    return pipeline_status(_require_coordinator())
