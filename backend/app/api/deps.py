"""Dependencias compartidas por las rutas HTTP."""

from fastapi import Header, HTTPException, Request

from app.repositories.factory import Repositories
from app.services.notifications import NotificationRelay
from app.services.sequencer import CampaignSequencer


def get_repositories(request: Request) -> Repositories:
    return request.app.state.repositories


def get_sequencer(request: Request) -> CampaignSequencer:
    return request.app.state.sequencer


def get_relay(request: Request) -> NotificationRelay:
    return request.app.state.relay


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Usuario del panel; lo inyecta el gateway autenticado delante de la API."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Usuario no autenticado")
    return x_user_id
