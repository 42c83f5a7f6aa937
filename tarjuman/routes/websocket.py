"""
WebSocket channel to the overlay.

Protocol:
  Server -> Client (JSON text frames):
    {"type": "translation_result", original_text, translated_text, ...}
    {"type": "translation_error", error_kind, message, terminal}
    {"type": "status", status, state, queue_depth, detail}
    {"type": "pong"}

  Client -> Server (JSON text frames):
    {"type": "start"} | {"type": "stop"} | {"type": "get_status"} | {"type": "ping"}

Any number of overlays may connect; every event goes to all of them.
"""

import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from tarjuman.models.schemas import ErrorEvent
from tarjuman.pipeline.errors import AudioDeviceError, ErrorKind, user_message
from tarjuman.pipeline.orchestrator import Event, PipelineAlreadyRunning
from tarjuman.routes.api_pipeline import pipeline_status
import tarjuman.routes._state as _state

logger = logging.getLogger("tarjuman.ws")


class WebSocketBroadcaster:
    """ResultSink that fans events out to every connected overlay.

    A client whose send fails is dropped; the others still get the event.
    """

    def __init__(self):
        self._clients: set[WebSocket] = set()
        self.events_sent = 0

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def add(self, websocket: WebSocket):
        self._clients.add(websocket)
        logger.info(f"Overlay connected ({len(self._clients)} total)")

    def remove(self, websocket: WebSocket):
        if websocket in self._clients:
            self._clients.discard(websocket)
            logger.info(f"Overlay disconnected ({len(self._clients)} left)")

    async def send(self, event: Event) -> None:
        await self.send_json(event.model_dump(mode="json"))

    async def send_json(self, data: dict) -> None:
        text = json.dumps(data, ensure_ascii=False)
        for ws in list(self._clients):
            try:
                await ws.send_text(text)
                self.events_sent += 1
            except Exception as e:
                logger.debug(f"WebSocket send failed, dropping client: {e}")
                self.remove(ws)


_broadcaster = WebSocketBroadcaster()


def get_broadcaster() -> WebSocketBroadcaster:
    return _broadcaster


async def _send(websocket: WebSocket, data: dict):
    try:
        await websocket.send_text(json.dumps(data, ensure_ascii=False))
    except Exception as e:
        logger.debug(f"WebSocket send failed (client may have disconnected): {e}")


async def _handle_control(websocket: WebSocket, msg: dict):
    t = msg.get("type", "")
    coordinator = _state._coordinator

    if t == "ping":
        await _send(websocket, {"type": "pong"})
        return
    if coordinator is None:
        await _send(websocket, ErrorEvent(
            error_kind=ErrorKind.UNKNOWN.value, message="Pipeline not initialized",
        ).model_dump(mode="json"))
        return

    if t == "get_status":
        await _send(websocket, {"type": "status_report", **pipeline_status(coordinator)})
    elif t == "start":
        try:
            await coordinator.start()
        except PipelineAlreadyRunning:
            await _send(websocket, {"type": "status_report", **pipeline_status(coordinator)})
        except AudioDeviceError as e:
            # The coordinator already broadcast the error event
            logger.warning(f"Start from overlay failed: {user_message(e)}")
    elif t == "stop":
        await coordinator.stop()
    else:
        logger.debug(f"Ignoring unknown overlay message type '{t}'")


async def overlay_endpoint(websocket: WebSocket):
    """Overlay connection: receives pipeline events, may send control messages."""
    await websocket.accept()
    _broadcaster.add(websocket)
    try:
        if _state._coordinator is not None:
            c = _state._coordinator
            await _send(websocket, {
                "type": "status",
                "status": c.status_text,
                "state": c.state.value,
                "queue_depth": c.metrics["queue_depth"],
                "detail": c.last_error,
            })

        while True:
            text = await websocket.receive_text()
            try:
                msg = json.loads(text)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict):
                await _handle_control(websocket, msg)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        _broadcaster.remove(websocket)
