"""Punto de entrada principal para la aplicación FastAPI."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.agents.base import ChatResponder
from app.agents.registry import resolve_responder
from app.api.routes.campaigns import router as campaigns_router
from app.api.routes.campaigns import sequencer_router
from app.api.routes.health import router as health_router
from app.api.routes.notifications import router as notifications_router
from app.channels.webchat.router import router as webchat_router
from app.channels.webchat.service import ChatTurnProcessor
from app.channels.webchat.session import ChatSessionRegistry
from app.core.config import Settings, settings
from app.core.logging import configure_logging, get_logger, resolve_log_level
from app.core.middleware import RequestLoggingMiddleware
from app.repositories.factory import Repositories, build_repositories
from app.services.dispatch import TouchDispatcher
from app.services.notifications import NotificationRelay
from app.services.sequencer import CampaignSequencer

API_PREFIX = "/api"


def _configure_logging(config: Settings) -> None:
    default_log_level = logging.DEBUG if config.environment != "production" else logging.INFO
    log_level = resolve_log_level(config.log_level, default=default_log_level)
    per_logger_files: dict[str, str] | None = None
    if config.log_file_path:
        log_dir = Path(config.log_file_path).parent
        per_logger_files = {
            "app.request": str(log_dir / "request.log"),
            "app.services.sequencer": str(log_dir / "sequencer.log"),
            "app.channels.webchat": str(log_dir / "webchat.log"),
        }
    configure_logging(
        level=log_level,
        log_file=config.log_file_path,
        per_logger_files=per_logger_files,
    )


def create_app(
    config: Settings = settings,
    *,
    repositories: Repositories | None = None,
    responder: ChatResponder | None = None,
    sequencer_enabled: bool | None = None,
) -> FastAPI:
    """Crea y configura la instancia de FastAPI con sus componentes de proceso."""
    _configure_logging(config)
    log = get_logger("app")

    repos = repositories or build_repositories(config)
    sessions = ChatSessionRegistry()
    relay = NotificationRelay()
    processor = ChatTurnProcessor(
        sessions=sessions,
        relay=relay,
        leads=repos.leads,
        conversations=repos.conversations,
        communications=repos.communications,
        responder=responder or resolve_responder("chat"),
        enrollments=repos.enrollments,
        templates=repos.templates,
        default_campaign_id=config.default_campaign_id,
        anonymous_lead_id=config.chat_anonymous_lead_id,
        unknown_lead_policy=config.chat_unknown_lead_policy,
    )
    sequencer = CampaignSequencer(
        repos.enrollments,
        repos.templates,
        TouchDispatcher(repos.leads, repos.communications),
        interval_seconds=config.sequencer_interval_seconds,
        max_attempts=config.sequencer_max_attempts,
        claim_lease=timedelta(seconds=config.sequencer_claim_lease_seconds),
    )
    run_sequencer = config.sequencer_enabled if sequencer_enabled is None else sequencer_enabled

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if run_sequencer:
            sequencer.start()
        try:
            yield
        finally:
            await sequencer.stop()
            log.info("app.shutdown", extra={"open_connections": len(sessions)})

    app = FastAPI(title="LeadRelay API", version="0.1.0", lifespan=lifespan)
    app.state.repositories = repos
    app.state.sessions = sessions
    app.state.relay = relay
    app.state.turn_processor = processor
    app.state.sequencer = sequencer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Se ajustará por ambiente
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(campaigns_router, prefix=API_PREFIX)
    app.include_router(sequencer_router, prefix=API_PREFIX)
    app.include_router(notifications_router, prefix=API_PREFIX)
    app.include_router(webchat_router, prefix=API_PREFIX)

    log.info(
        "app.created",
        extra={"environment": config.environment, "storage_backend": config.storage_backend},
    )
    return app


app = create_app()
