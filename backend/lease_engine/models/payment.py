"""Payment ledger model."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lease_engine.core.clock import utcnow
from lease_engine.core.database import Base
from lease_engine.models.enums import PaymentStatus, PaymentType

if TYPE_CHECKING:
    from lease_engine.models.lease import LeaseAgreement


class Payment(Base):
    """Append-only ledger entry. Only ``status`` may later move to REFUNDED."""

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lease_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("leases.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    # Null for acceptance payments and ad-hoc fees
    schedule_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("rent_schedule_items.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[PaymentType] = mapped_column(SQLEnum(PaymentType, name="payment_type"), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status"),
        default=PaymentStatus.COMPLETED,
        nullable=False,
    )
    payment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Client-supplied replay guard
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    recorded_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    lease: Mapped["LeaseAgreement"] = relationship("LeaseAgreement", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="amount_positive"),
    )
