"""LeaseAgreement model."""

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
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lease_engine.core.clock import utcnow
from lease_engine.core.database import Base
from lease_engine.models.enums import LeaseStatus, OPEN_LEASE_STATUSES

if TYPE_CHECKING:
    from lease_engine.models.schedule import RentScheduleItem
    from lease_engine.models.payment import Payment

_OPEN_STATUS_SQL = "status IN ({})".format(", ".join(f"'{s.name}'" for s in OPEN_LEASE_STATUSES))


class LeaseAgreement(Base):
    """A binding rental agreement created from an approved application.

    Rows are never deleted; REJECTED, TERMINATED and EXPIRED are soft
    terminals. All mutation goes through version-checked updates.
    """

    __tablename__ = "leases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    application_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    property_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    landlord_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    status: Mapped[LeaseStatus] = mapped_column(
        SQLEnum(LeaseStatus, name="lease_status"),
        default=LeaseStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Term
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Money (ALL INTEGER CENTS - BIGINT)
    rent_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    security_deposit_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Opaque reference into the document service
    contract_document_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Acceptance
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    acceptance_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Activation / retirement
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    terminated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    termination_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Acceptance payment gate
    deposit_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    first_rent_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_due_on_acceptance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_paid_on_acceptance_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    # Optimistic concurrency counter
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    schedule_items: Mapped[list["RentScheduleItem"]] = relationship(
        "RentScheduleItem",
        back_populates="lease",
        order_by="RentScheduleItem.period_index",
    )
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="lease")

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="term_order"),
        CheckConstraint("rent_amount_cents > 0", name="rent_positive"),
        CheckConstraint("security_deposit_cents > 0", name="deposit_positive"),
        CheckConstraint(
            "total_paid_on_acceptance_cents <= total_due_on_acceptance_cents",
            name="acceptance_no_overpay",
        ),
        Index(
            "uq_leases_open_per_property",
            "property_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_SQL),
            sqlite_where=text(_OPEN_STATUS_SQL),
        ),
    )

    @property
    def remaining_on_acceptance_cents(self) -> int:
        return self.total_due_on_acceptance_cents - self.total_paid_on_acceptance_cents
