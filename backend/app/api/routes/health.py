"""Endpoint de salud mínimo para validaciones rápidas."""
from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Estado del servicio")
def healthcheck(request: Request) -> dict[str, Any]:
    """Indica que la API está viva junto con conexiones abiertas y estado del secuenciador."""
    state = request.app.state
    sequencer = state.sequencer
    last = sequencer.last_report
    return {
        "status": "ok",
        "connections": len(state.sessions),
        "sequencer": {
            "running": sequencer.is_running,
            "ticking": sequencer.is_ticking,
            "last_tick": last.as_dict() if last else None,
        },
    }
