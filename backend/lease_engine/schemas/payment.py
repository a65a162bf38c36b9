"""Payment schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import Field

from lease_engine.models.enums import PaymentStatus
from lease_engine.schemas.base import BaseSchema, IDMixin, PaymentTypeField
from lease_engine.schemas.lease import LeaseResponse


class AcceptancePaymentRequest(BaseSchema):
    """Payment towards the security deposit + first month's rent."""

    amount_cents: int = Field(..., gt=0)
    method: Optional[str] = Field(None, max_length=50)
    # Replays with the same key return the original payment
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=255)


class AdHocPaymentCreate(BaseSchema):
    """Late fee, maintenance fee or other charge logged against a lease."""

    amount_cents: int = Field(..., gt=0)
    type: PaymentTypeField
    method: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=2000)


class PaymentResponse(BaseSchema, IDMixin):
    lease_id: UUID
    schedule_item_id: Optional[UUID] = None
    amount_cents: int
    type: PaymentTypeField
    status: PaymentStatus
    payment_date: datetime
    method: Optional[str] = None
    description: Optional[str] = None
    idempotency_key: Optional[str] = None
    recorded_by: Optional[UUID] = None
    created_at: datetime


class AcceptancePaymentResponse(BaseSchema):
    payment: PaymentResponse
    lease: LeaseResponse
    replayed: bool = False


class PaymentListResponse(BaseSchema):
    payments: list[PaymentResponse]
    total: int
