"""Jobs outbox model for collaborator side effects with unique_scope de-duplication."""

import uuid
from datetime import datetime
from typing import Optional, Any

from sqlalchemy import JSON, String, DateTime, Text, Integer, Enum as SQLEnum, Index, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from lease_engine.core.clock import utcnow
from lease_engine.core.database import Base
from lease_engine.models.enums import JobStatus


class JobsOutbox(Base):
    """Side-effect queue written in the same transaction as the change that caused it.

    Property status sync and notifications go through this table, so they are
    delivered at least once after commit and never roll back lease state.
    unique_scope ensures de-duplication (e.g. "property_status:{lease_id}:RENTED").
    """

    __tablename__ = "jobs_outbox"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Job type ("property_status", "notification")
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
    )

    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="job_status"),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )

    # UNIQUE constraint prevents duplicate jobs for same scope
    unique_scope: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)

    # Retry tracking
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scheduling
    run_after: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_jobs_outbox_status_run_after", "status", "run_after"),
    )
