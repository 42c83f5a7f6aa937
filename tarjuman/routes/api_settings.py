"""Settings routes. Changes apply on the next pipeline start."""

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from tarjuman.models.schemas import SettingsUpdate
import tarjuman.routes._state as _state

settings_router = APIRouter(prefix="/api/settings", tags=["settings"])


def _require_store():
    if not _state._settings_store:
        raise HTTPException(503, "Settings not initialized")
    return _state._settings_store


@settings_router.get("")
async def get_settings():
    return _require_store().get().model_dump()


@settings_router.put("")
async def update_settings(req: SettingsUpdate):
    """Merge a partial update into the stored settings. 400 on invalid values."""
    store = _require_store()
    try:
        settings = store.update(req)
    except ValidationError as e:
        errors = "; ".join(err["msg"] for err in e.errors())
        raise HTTPException(400, errors)
    running = bool(_state._coordinator and _state._coordinator.running)
    return {"settings": settings.model_dump(), "applies_on_restart": running}


@settings_router.delete("")
async def reset_settings():
    return _require_store().reset().model_dump()
