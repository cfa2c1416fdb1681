"""Secuenciador de campañas: avanza inscripciones vencidas un paso por ciclo."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.logging import get_logger, log_event
from app.models.campaigns import Enrollment, EnrollmentStatus
from app.repositories.base import EnrollmentStore, TemplateCatalog

from .dispatch import Dispatcher

logger = get_logger(__name__)

JOB_ID = "campaign_sequencer"

# Un toque con delay 0 vence en el siguiente ciclo, nunca en el mismo.
MIN_TOUCH_GAP = timedelta(seconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TickReport:
    """Resumen de un ciclo del secuenciador."""

    now: datetime
    selected: int = 0
    advanced: int = 0
    completed: int = 0
    stale: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["now"] = self.now.isoformat()
        return payload


class CampaignSequencer:
    """Sondea inscripciones vencidas y envía exactamente un toque por inscripción.

    Cada inscripción seleccionada pasa por reclamo, envío y cierre, todos como
    compare-and-set sobre el paso y la versión leídos al inicio del ciclo. Una
    instancia que pierde el reclamo omite la inscripción, de modo que varias
    réplicas nunca envían dos veces el mismo paso.

    Args:
        enrollments: Tabla durable de inscripciones.
        templates: Catálogo de plantillas por (campaña, orden).
        dispatcher: Canal que entrega el toque.
        interval_seconds: Periodo del temporizador.
        max_attempts: Envíos fallidos antes de marcar `failed`; 0 reintenta siempre.
        claim_lease: Tiempo que una inscripción reclamada queda fuera de selección.
        clock: Fuente de tiempo inyectable.
    """

    def __init__(
        self,
        enrollments: EnrollmentStore,
        templates: TemplateCatalog,
        dispatcher: Dispatcher,
        *,
        interval_seconds: int = 60,
        max_attempts: int = 5,
        claim_lease: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._enrollments = enrollments
        self._templates = templates
        self._dispatcher = dispatcher
        self._interval_seconds = interval_seconds
        self._max_attempts = max_attempts
        self._claim_lease = claim_lease
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None
        self._current: asyncio.Future[TickReport] | None = None
        self.last_report: TickReport | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def is_ticking(self) -> bool:
        return self._current is not None and not self._current.done()

    async def tick(self, now: datetime | None = None) -> TickReport:
        """Procesa un ciclo con una instantánea de las inscripciones vencidas en `now`."""
        now = now or self._clock()
        report = TickReport(now=now)
        due = await self._enrollments.list_due(now)
        report.selected = len(due)

        for enrollment in due:
            try:
                await self._advance(enrollment, now, report)
            except Exception:
                report.failed += 1
                logger.exception(
                    "sequencer.enrollment_failed",
                    extra={
                        "lead_id": enrollment.lead_id,
                        "campaign_id": enrollment.campaign_id,
                        "current_step": enrollment.current_step,
                    },
                )

        self.last_report = report
        log_event(logger, "sequencer.tick_completed", **report.as_dict())
        return report

    async def _advance(self, enrollment: Enrollment, now: datetime, report: TickReport) -> None:
        next_step = enrollment.current_step + 1
        template = await self._templates.get(enrollment.campaign_id, next_step)

        if template is None:
            # Catálogo agotado: fin normal de la secuencia, sin envío.
            closed = await self._enrollments.compare_and_set(
                enrollment,
                current_step=enrollment.current_step,
                status=EnrollmentStatus.COMPLETED,
                next_touch_at=None,
                failed_attempts=enrollment.failed_attempts,
            )
            if closed is None:
                self._mark_stale(enrollment, report)
                return
            report.completed += 1
            log_event(
                logger,
                "sequencer.sequence_exhausted",
                lead_id=enrollment.lead_id,
                campaign_id=enrollment.campaign_id,
                current_step=enrollment.current_step,
            )
            return

        following = await self._templates.get(enrollment.campaign_id, next_step + 1)

        claimed = await self._enrollments.compare_and_set(
            enrollment,
            current_step=enrollment.current_step,
            status=EnrollmentStatus.IN_PROGRESS,
            next_touch_at=now + self._claim_lease,
            failed_attempts=enrollment.failed_attempts,
        )
        if claimed is None:
            self._mark_stale(enrollment, report)
            return

        try:
            await self._dispatcher.dispatch(claimed, template)
        except Exception:
            report.failed += 1
            logger.exception(
                "sequencer.dispatch_failed",
                extra={
                    "lead_id": enrollment.lead_id,
                    "campaign_id": enrollment.campaign_id,
                    "step": next_step,
                    "attempt": enrollment.failed_attempts + 1,
                },
            )
            await self._release(claimed, enrollment)
            return

        if following is not None:
            status = EnrollmentStatus.IN_PROGRESS
            next_touch_at = now + max(timedelta(hours=following.delay_hours), MIN_TOUCH_GAP)
        else:
            status = EnrollmentStatus.COMPLETED
            next_touch_at = None

        try:
            finished = await self._enrollments.compare_and_set(
                claimed,
                current_step=next_step,
                status=status,
                next_touch_at=next_touch_at,
                failed_attempts=0,
            )
        except Exception:
            # El toque salió pero el cierre no quedó escrito: se libera como un envío fallido.
            report.failed += 1
            logger.exception(
                "sequencer.finalize_failed",
                extra={
                    "lead_id": enrollment.lead_id,
                    "campaign_id": enrollment.campaign_id,
                    "step": next_step,
                },
            )
            await self._release(claimed, enrollment)
            return
        if finished is None:
            # El lease expiró antes de cerrar y otra instancia tomó la fila.
            logger.error(
                "sequencer.claim_lost",
                extra={
                    "lead_id": enrollment.lead_id,
                    "campaign_id": enrollment.campaign_id,
                    "step": next_step,
                },
            )
            report.stale += 1
            return

        if status is EnrollmentStatus.COMPLETED:
            report.completed += 1
        else:
            report.advanced += 1
        log_event(
            logger,
            "sequencer.enrollment_advanced",
            lead_id=enrollment.lead_id,
            campaign_id=enrollment.campaign_id,
            current_step=next_step,
            status=str(status),
            next_touch_at=next_touch_at.isoformat() if next_touch_at else None,
        )

    async def _release(self, claimed: Enrollment, original: Enrollment) -> None:
        """Devuelve la inscripción a su estado leído para reintentar en el próximo ciclo."""
        attempts = original.failed_attempts + 1
        exhausted = bool(self._max_attempts) and attempts >= self._max_attempts
        try:
            released = await self._enrollments.compare_and_set(
                claimed,
                current_step=original.current_step,
                status=EnrollmentStatus.FAILED if exhausted else EnrollmentStatus.IN_PROGRESS,
                next_touch_at=None if exhausted else original.next_touch_at,
                failed_attempts=attempts,
            )
        except Exception:
            logger.exception(
                "sequencer.release_failed",
                extra={"lead_id": original.lead_id, "campaign_id": original.campaign_id},
            )
            return
        if released is not None and exhausted:
            logger.warning(
                "sequencer.enrollment_failed_permanently",
                extra={
                    "lead_id": original.lead_id,
                    "campaign_id": original.campaign_id,
                    "attempts": attempts,
                },
            )

    @staticmethod
    def _mark_stale(enrollment: Enrollment, report: TickReport) -> None:
        report.stale += 1
        log_event(
            logger,
            "sequencer.stale_read",
            lead_id=enrollment.lead_id,
            campaign_id=enrollment.campaign_id,
            current_step=enrollment.current_step,
        )

    async def run_once(self) -> TickReport | None:
        """Ejecuta un ciclo salvo que otro siga en curso, en cuyo caso lo omite."""
        if self.is_ticking:
            logger.warning("sequencer.tick_skipped", extra={"reason": "tick_in_progress"})
            return None
        self._current = asyncio.ensure_future(self.tick())
        # shield: cancelar al invocador no interrumpe un ciclo a medias.
        return await asyncio.shield(self._current)

    async def _scheduled_tick(self) -> None:
        try:
            await self.run_once()
        except Exception:
            logger.exception("sequencer.tick_failed")

    def start(self) -> None:
        """Programa el ciclo recurrente en el event loop actual."""
        if self._scheduler is not None:
            return
        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self._scheduled_tick,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self._interval_seconds,
        )
        scheduler.start()
        self._scheduler = scheduler
        log_event(logger, "sequencer.started", interval_seconds=self._interval_seconds)

    async def stop(self) -> None:
        """Detiene el temporizador después de que termine el ciclo en curso."""
        scheduler = self._scheduler
        if scheduler is None:
            return
        scheduler.pause()
        current = self._current
        if current is not None and not current.done():
            try:
                await current
            except Exception:
                logger.exception("sequencer.tick_failed")
        scheduler.shutdown(wait=False)
        self._scheduler = None
        log_event(logger, "sequencer.stopped")
