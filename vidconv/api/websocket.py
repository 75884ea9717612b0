import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from vidconv.domain.events import ConversionFailed, ConversionProgress, Event
from vidconv.infrastructure.event_bus import EventBus

logger = logging.getLogger(__name__)
router = APIRouter()

CANCEL_EVENT = "cancel-conversion"


class ConnectionManager:
    """Fans domain events out to every connected WebSocket client.

    Events are published from worker threads, so delivery is handed to the
    event loop the server runs on. Fire and forget: no acknowledgement, and a
    client that fails a send is dropped.
    """

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop

    def attach(self, event_bus: EventBus):
        event_bus.subscribe(ConversionProgress, self.publish_event)
        event_bus.subscribe(ConversionFailed, self.publish_event)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"client connected ({len(self.active_connections)} active)")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(f"client disconnected ({len(self.active_connections)} active)")

    async def broadcast(self, message: Dict[str, Any]):
        """Send message to all connected clients."""
        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Error sending ws message (disconnecting client): {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn)

    def publish_event(self, event: Event):
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"No event loop bound; dropping {event.name}")
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(event.to_message()), loop)


def parse_client_message(text: str) -> Optional[Dict[str, Any]]:
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        return None
    return message


def cancel_target(message: Dict[str, Any]) -> str:
    data = message.get("data")
    if not isinstance(data, dict):
        return ""
    name = data.get("fileName")
    return name if isinstance(name, str) else ""


@router.websocket("/ws")
async def websocket_events(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.connections
    orchestrator = websocket.app.state.orchestrator
    await manager.connect(websocket)
    try:
        while True:
            message = parse_client_message(await websocket.receive_text())
            if message is None:
                logger.warning("Ignoring malformed websocket message")
                continue
            if message["event"] == CANCEL_EVENT:
                file_name = cancel_target(message)
                if file_name:
                    orchestrator.cancel(file_name)
    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        manager.disconnect(websocket)
