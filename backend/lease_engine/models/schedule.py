"""RentScheduleItem model."""

import uuid
from datetime import datetime, date
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lease_engine.core.clock import utcnow
from lease_engine.core.database import Base
from lease_engine.models.enums import ScheduleItemStatus

if TYPE_CHECKING:
    from lease_engine.models.lease import LeaseAgreement


class RentScheduleItem(Base):
    """One billing period of an active lease.

    ``status`` is a persisted snapshot of the derived status; the source of
    truth is the amounts plus the clock (see ``services.schedule``).
    """

    __tablename__ = "rent_schedule_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lease_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("leases.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    period_index: Mapped[int] = mapped_column(Integer, nullable=False)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    grace_period_ends: Mapped[date] = mapped_column(Date, nullable=False)

    # Money (ALL INTEGER CENTS - BIGINT)
    amount_due_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_paid_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    status: Mapped[ScheduleItemStatus] = mapped_column(
        SQLEnum(ScheduleItemStatus, name="schedule_item_status"),
        default=ScheduleItemStatus.UPCOMING,
        nullable=False,
        index=True,
    )

    late_fee_amount_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    late_fee_applied: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    due_notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    waived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    waive_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    lease: Mapped["LeaseAgreement"] = relationship("LeaseAgreement", back_populates="schedule_items")

    __table_args__ = (
        UniqueConstraint("lease_id", "period_index", name="uq_schedule_lease_period"),
        CheckConstraint("amount_paid_cents >= 0", name="paid_non_negative"),
        CheckConstraint("amount_paid_cents <= amount_due_cents", name="no_overpay"),
    )

    @property
    def remaining_cents(self) -> int:
        return self.amount_due_cents - self.amount_paid_cents
