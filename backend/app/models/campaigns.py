"""Modelos de campañas secuenciales: plantillas de toque e inscripciones."""

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field, model_validator

TouchChannel = Literal["email", "sms"]


class EnrollmentStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not EnrollmentStatus.IN_PROGRESS


class TouchTemplate(BaseModel):
    """Paso de una campaña; `sequence_order` es contiguo empezando en 1."""

    campaign_id: str
    sequence_order: int = Field(..., ge=1)
    delay_hours: float = Field(default=0, ge=0)
    channel: TouchChannel = "email"
    subject: str | None = None
    content: str

    model_config = {"frozen": True}


class Enrollment(BaseModel):
    """Progreso de un lead dentro de la secuencia de una campaña.

    `next_touch_at` es nulo si y sólo si el estado es terminal. Sólo el
    secuenciador modifica la inscripción y cada escritura exitosa incrementa
    `lock_version`.
    """

    lead_id: str
    campaign_id: str
    current_step: int = Field(default=0, ge=0)
    status: EnrollmentStatus = EnrollmentStatus.IN_PROGRESS
    next_touch_at: datetime | None = None
    lock_version: int = 0
    failed_attempts: int = 0

    @model_validator(mode="after")
    def _check_terminal_consistency(self) -> "Enrollment":
        if self.status.is_terminal != (self.next_touch_at is None):
            raise ValueError("next_touch_at debe ser nulo si y sólo si el estado es terminal")
        return self

    @property
    def key(self) -> tuple[str, str]:
        return (self.lead_id, self.campaign_id)
