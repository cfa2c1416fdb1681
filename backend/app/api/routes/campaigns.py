"""Endpoints de inscripción a campañas y disparo manual del secuenciador."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.api.deps import get_repositories, get_sequencer
from app.core.logging import get_logger
from app.models.campaigns import Enrollment
from app.repositories.base import RepositoryError
from app.repositories.factory import Repositories
from app.services.campaigns import enroll_lead
from app.services.sequencer import CampaignSequencer

logger = get_logger(__name__)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])
sequencer_router = APIRouter(prefix="/sequencer", tags=["sequencer"])


class EnrollmentRequest(BaseModel):
    """Payload para inscribir un lead en la campaña."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    lead_id: str = Field(..., min_length=1, description="Lead a inscribir.")


@router.post(
    "/{campaign_id}/enrollments",
    response_model=Enrollment,
    status_code=status.HTTP_201_CREATED,
    summary="Inscribe un lead en la secuencia de la campaña",
)
async def create_enrollment(
    campaign_id: str,
    payload: EnrollmentRequest,
    repos: Repositories = Depends(get_repositories),
) -> Enrollment:
    """Alta idempotente: repetirla devuelve la inscripción existente."""
    try:
        lead = await repos.leads.find_by_id(payload.lead_id)
        if lead is None:
            raise HTTPException(status_code=404, detail="Lead no encontrado")
        return await enroll_lead(
            repos.enrollments,
            repos.templates,
            lead_id=lead.id,
            campaign_id=campaign_id,
            now=datetime.now(timezone.utc),
        )
    except RepositoryError as exc:
        logger.exception(
            "campaigns.enroll_failed",
            extra={"campaign_id": campaign_id, "lead_id": payload.lead_id},
        )
        raise HTTPException(status_code=502, detail="No fue posible registrar la inscripción") from exc


@router.get(
    "/{campaign_id}/enrollments/{lead_id}",
    response_model=Enrollment,
    summary="Consulta el progreso de un lead en la campaña",
)
async def get_enrollment(
    campaign_id: str,
    lead_id: str,
    repos: Repositories = Depends(get_repositories),
) -> Enrollment:
    try:
        enrollment = await repos.enrollments.get(lead_id, campaign_id)
    except RepositoryError as exc:
        raise HTTPException(status_code=502, detail="No fue posible consultar la inscripción") from exc
    if enrollment is None:
        raise HTTPException(status_code=404, detail="Inscripción no encontrada")
    return enrollment


@sequencer_router.post("/tick", summary="Ejecuta un ciclo del secuenciador de inmediato")
async def trigger_tick(sequencer: CampaignSequencer = Depends(get_sequencer)) -> dict[str, Any]:
    try:
        report = await sequencer.run_once()
    except RepositoryError as exc:
        logger.exception("sequencer.manual_tick_failed")
        raise HTTPException(status_code=502, detail="No fue posible leer las inscripciones") from exc
    if report is None:
        raise HTTPException(status_code=409, detail="Hay un ciclo en curso")
    return report.as_dict()
