"""Outbox dispatcher: delivers committed side effects to collaborators."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lease_engine.core.config import get_settings
from lease_engine.core.database import get_sessionmaker
from lease_engine.models.enums import JobStatus, JobType, NotificationEvent, PropertyStatus
from lease_engine.models.jobs import JobsOutbox
from lease_engine.services.gateways import Collaborators, get_collaborators
from lease_engine.services.jobs import JobsService

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    delivered: int = 0
    retried: int = 0
    dead_lettered: int = 0

    @property
    def claimed(self) -> int:
        return self.delivered + self.retried + self.dead_lettered


class OutboxDispatcher:
    """Claims pending outbox jobs and hands them to the gateways.

    Delivery is at-least-once: a job is marked completed only after the
    gateway reports success, and a failed job goes back to PENDING until it
    runs out of attempts. A job whose worker died mid-delivery is claimed
    again once its visibility timeout has passed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collaborators: Collaborators,
        batch_size: int = 50,
        visibility_timeout_seconds: int = 300,
    ):
        self.session_factory = session_factory
        self.collaborators = collaborators
        self.batch_size = batch_size
        self.visibility_timeout = timedelta(seconds=visibility_timeout_seconds)

    async def drain(self) -> DispatchReport:
        """Deliver one batch of pending jobs."""
        report = DispatchReport()
        async with self.session_factory() as db:
            jobs_service = JobsService(db)
            jobs = await jobs_service.claim_pending_jobs(
                limit=self.batch_size, visibility_timeout=self.visibility_timeout
            )
            await db.commit()

            for job in jobs:
                error = None
                try:
                    delivered = await self._deliver(job)
                except Exception as e:
                    logger.exception(f"[OUTBOX] {job.type} {job.id} raised")
                    delivered, error = False, f"{type(e).__name__}: {e}"

                if delivered:
                    await jobs_service.complete_job(job.id)
                    report.delivered += 1
                else:
                    new_status = await jobs_service.fail_job(job, error or "collaborator reported failure")
                    if new_status == JobStatus.DEAD_LETTER:
                        logger.error(f"[OUTBOX] {job.type} {job.id} dead-lettered after {job.attempts} attempts")
                        report.dead_lettered += 1
                    else:
                        report.retried += 1
                await db.commit()

        if report.claimed:
            logger.info(
                f"[OUTBOX] delivered={report.delivered} retried={report.retried} "
                f"dead_lettered={report.dead_lettered}"
            )
        return report

    async def drain_safely(self) -> None:
        """Background-task entry point. Failures are left for the sweeper."""
        try:
            await self.drain()
        except Exception:
            logger.exception("[OUTBOX] Background drain failed; sweeper will retry")

    async def _deliver(self, job: JobsOutbox) -> bool:
        payload = job.payload
        if job.type == JobType.PROPERTY_STATUS.value:
            return await self.collaborators.properties.set_status(
                UUID(payload["property_id"]),
                PropertyStatus(payload["status"]),
            )
        if job.type == JobType.NOTIFICATION.value:
            return await self.collaborators.notifications.emit(
                NotificationEvent(payload["event"]),
                [UUID(r) for r in payload["recipient_ids"]],
                payload.get("data") or {},
            )
        raise ValueError(f"Unknown job type '{job.type}'")


def get_outbox_dispatcher() -> OutboxDispatcher:
    """FastAPI dependency: dispatcher bound to the app-wide sessionmaker."""
    settings = get_settings()
    return OutboxDispatcher(
        get_sessionmaker(),
        get_collaborators(),
        batch_size=settings.outbox_batch_size,
        visibility_timeout_seconds=settings.outbox_visibility_timeout_seconds,
    )
