"""Jobs outbox service for collaborator side effects.

All property-status and notification side effects MUST use jobs_outbox,
enqueued inside the transaction of the change that caused them.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from lease_engine.core.clock import utcnow
from lease_engine.models.enums import JobStatus, JobType, NotificationEvent, PropertyStatus
from lease_engine.models.jobs import JobsOutbox


class JobsService:
    """Service for managing side-effect jobs via outbox pattern."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        if self.db.get_bind().dialect.name == "sqlite":
            return sqlite_insert(JobsOutbox)
        return pg_insert(JobsOutbox)

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        unique_scope: str,
        run_after: Optional[datetime] = None,
    ) -> Optional[uuid.UUID]:
        """Enqueue a job with unique_scope de-duplication.

        Args:
            job_type: Type of job
            payload: Job payload as JSON-serializable dict
            unique_scope: Unique identifier for de-duplication
            run_after: Optional delay before job should run

        Returns:
            Job ID if created, None if duplicate scope exists
        """
        job_id = uuid.uuid4()

        # INSERT ... ON CONFLICT DO NOTHING for idempotency
        stmt = self._insert().values(
            id=job_id,
            type=job_type.value,
            payload=payload,
            status=JobStatus.PENDING,
            unique_scope=unique_scope,
            attempts=0,
            max_attempts=3,
            run_after=run_after or utcnow(),
            created_at=utcnow(),
        ).on_conflict_do_nothing(index_elements=["unique_scope"])

        result = await self.db.execute(stmt)

        # rowcount will be 0 if conflict occurred
        if result.rowcount == 0:
            return None

        return job_id

    async def enqueue_property_status(
        self,
        lease_id: uuid.UUID,
        property_id: uuid.UUID,
        status: PropertyStatus,
    ) -> Optional[uuid.UUID]:
        """Enqueue a property listing status change caused by a lease transition."""
        return await self.enqueue(
            job_type=JobType.PROPERTY_STATUS,
            payload={
                "lease_id": str(lease_id),
                "property_id": str(property_id),
                "status": status.value,
            },
            unique_scope=f"property_status:lease:{lease_id}:{status.value}",
        )

    async def enqueue_notification(
        self,
        event: NotificationEvent,
        recipient_ids: list[uuid.UUID],
        payload: dict[str, Any],
        scope_key: str,
    ) -> Optional[uuid.UUID]:
        """Enqueue a lifecycle notification; ``scope_key`` names the subject."""
        return await self.enqueue(
            job_type=JobType.NOTIFICATION,
            payload={
                "event": event.value,
                "recipient_ids": [str(r) for r in recipient_ids],
                "data": payload,
            },
            unique_scope=f"notification:{event.value}:{scope_key}",
        )

    async def claim_pending_jobs(
        self,
        job_type: Optional[JobType] = None,
        limit: int = 10,
        visibility_timeout: timedelta = timedelta(minutes=5),
    ) -> list[JobsOutbox]:
        """Claim pending jobs for processing.

        Updates status to PROCESSING and returns jobs. A job left in
        PROCESSING for longer than ``visibility_timeout`` belonged to a
        worker that died before recording the outcome, and is claimed again.
        Abandoned jobs that are out of attempts are dead-lettered instead.
        """
        now = utcnow()
        abandoned = and_(
            JobsOutbox.status == JobStatus.PROCESSING,
            JobsOutbox.started_at <= now - visibility_timeout,
        )

        await self.db.execute(
            update(JobsOutbox)
            .where(abandoned, JobsOutbox.attempts >= JobsOutbox.max_attempts)
            .values(
                status=JobStatus.DEAD_LETTER,
                last_error="abandoned while processing; attempts exhausted",
            )
            .execution_options(synchronize_session=False)
        )

        query = (
            select(JobsOutbox)
            .where(
                or_(
                    and_(JobsOutbox.status == JobStatus.PENDING, JobsOutbox.run_after <= now),
                    and_(abandoned, JobsOutbox.attempts < JobsOutbox.max_attempts),
                )
            )
            .with_for_update(skip_locked=True)
        )

        if job_type:
            query = query.where(JobsOutbox.type == job_type.value)

        query = query.order_by(JobsOutbox.run_after).limit(limit)

        result = await self.db.execute(query)
        jobs = list(result.scalars().all())

        if not jobs:
            return []

        job_ids = [j.id for j in jobs]
        await self.db.execute(
            update(JobsOutbox)
            .where(JobsOutbox.id.in_(job_ids))
            .values(
                status=JobStatus.PROCESSING,
                started_at=now,
                attempts=JobsOutbox.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )

        claimed = await self.db.execute(
            select(JobsOutbox)
            .where(JobsOutbox.id.in_(job_ids))
            .order_by(JobsOutbox.run_after)
            .execution_options(populate_existing=True)
        )
        return list(claimed.scalars().all())

    async def complete_job(self, job_id: uuid.UUID) -> None:
        """Mark job as completed."""
        await self.db.execute(
            update(JobsOutbox)
            .where(JobsOutbox.id == job_id)
            .values(
                status=JobStatus.COMPLETED,
                completed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def fail_job(
        self,
        job: JobsOutbox,
        error: str,
        dead_letter: bool = False,
    ) -> JobStatus:
        """Mark job as failed.

        If dead_letter=True or max attempts reached, moves to DEAD_LETTER.
        Otherwise, resets to PENDING for retry.
        """
        if dead_letter or job.attempts >= job.max_attempts:
            new_status = JobStatus.DEAD_LETTER
        else:
            new_status = JobStatus.PENDING

        await self.db.execute(
            update(JobsOutbox)
            .where(JobsOutbox.id == job.id)
            .values(
                status=new_status,
                last_error=error[:2000],
            )
            .execution_options(synchronize_session=False)
        )
        return new_status
