"""Endpoint WebSocket del canal webchat."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from app.core.logging import get_logger

from .deps import get_turn_processor
from .service import ChatTurnProcessor

logger = get_logger("app.channels.webchat")

router = APIRouter(tags=["webchat"])


class WebSocketConnection:
    """Adaptador de `WebSocket` que descarta envíos tras el cierre del socket."""

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self.connection_id = connection_id or uuid4().hex
        self._websocket = websocket
        self._closed = False

    def mark_closed(self) -> None:
        self._closed = True

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self._closed or self._websocket.application_state is not WebSocketState.CONNECTED:
            return
        try:
            await self._websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError):
            # Socket cerrado a mitad de turno: la respuesta se pierde sin error.
            self._closed = True
            logger.debug(
                "webchat.send_discarded",
                extra={"connection_id": self.connection_id, "event": payload.get("type")},
            )


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    processor: ChatTurnProcessor = Depends(get_turn_processor),
) -> None:
    """Atiende una conexión del widget o del panel durante toda su vida."""
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    processor.connect(connection)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await processor.handle_raw(connection, raw)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception(
            "webchat.transport_error", extra={"connection_id": connection.connection_id}
        )
    finally:
        connection.mark_closed()
        await processor.disconnect(connection)
