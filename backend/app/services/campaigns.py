"""Alta de leads en campañas secuenciales."""

from __future__ import annotations

from datetime import datetime, timedelta

from app.core.logging import get_logger, log_event
from app.models.campaigns import Enrollment
from app.repositories.base import EnrollmentStore, TemplateCatalog

logger = get_logger(__name__)


async def enroll_lead(
    enrollments: EnrollmentStore,
    templates: TemplateCatalog,
    *,
    lead_id: str,
    campaign_id: str,
    now: datetime,
) -> Enrollment:
    """Inscribe al lead en el paso 0; el primer toque vence tras el delay de la plantilla 1.

    Una campaña sin plantillas deja la inscripción `completed` desde el inicio.
    Repetir el alta devuelve la inscripción existente sin modificarla.
    """
    first = await templates.get(campaign_id, 1)
    next_touch_at = now + timedelta(hours=first.delay_hours) if first else None
    enrollment = await enrollments.enroll(lead_id, campaign_id, next_touch_at=next_touch_at)
    log_event(
        logger,
        "campaigns.lead_enrolled",
        lead_id=lead_id,
        campaign_id=campaign_id,
        status=str(enrollment.status),
        current_step=enrollment.current_step,
    )
    return enrollment
