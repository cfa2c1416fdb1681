"""Dependencias comunes para el canal webchat."""

from fastapi import WebSocket

from .service import ChatTurnProcessor


def get_turn_processor(websocket: WebSocket) -> ChatTurnProcessor:
    """Devuelve el procesador creado en el arranque de la aplicación."""
    return websocket.app.state.turn_processor
