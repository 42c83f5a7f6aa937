"""System routes: backend check, supported languages, input devices."""

import logging

from fastapi import APIRouter, HTTPException

from tarjuman.audio.devices import list_input_devices
from tarjuman.clients.transport import build_transport
from tarjuman.models.languages import SUPPORTED_LANGUAGES
from tarjuman.pipeline.errors import AudioDeviceError, user_message
import tarjuman.routes._state as _state

logger = logging.getLogger("tarjuman.api")

system_router = APIRouter(prefix="/api", tags=["system"])


@system_router.post("/test-apis")
async def test_apis():
    """Check the backend with the stored settings.

    Returns {mock_mode: true} in simulated mode, otherwise
    {backend, translation, tts} booleans. Never fails on a dead backend.
    """
    if not _state._settings_store or not _state._config:
        raise HTTPException(503, "Not initialized")
    settings = _state._settings_store.get()
    transport = build_transport(settings, _state._config)
    try:
        return await transport.health()
    finally:
        await transport.close()


@system_router.get("/languages")
async def languages():
    return {
        "languages": [
            {"code": code, **info} for code, info in SUPPORTED_LANGUAGES.items()
        ]
    }


@system_router.get("/devices")
async def input_devices():
    """List microphones for the device selector. 503 if audio is unavailable."""
    try:
        return {"devices": [{"id": "default", "name": "System default"}, *list_input_devices()]}
    except AudioDeviceError as e:
        logger.warning(f"Could not list input devices: {e}")
        raise HTTPException(503, user_message(e))
