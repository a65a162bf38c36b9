"""Rent schedule schemas."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import Field

from lease_engine.schemas.base import BaseSchema, IDMixin, ScheduleItemStatusField, TimestampMixin
from lease_engine.schemas.payment import PaymentResponse


class ScheduleItemResponse(BaseSchema, IDMixin, TimestampMixin):
    """One rent period."""

    lease_id: UUID
    period_index: int
    period_start: date
    period_end: date
    due_date: date
    grace_period_ends: date
    amount_due_cents: int
    amount_paid_cents: int
    remaining_cents: int
    status: ScheduleItemStatusField
    late_fee_amount_cents: int
    late_fee_applied: bool
    paid_at: Optional[datetime] = None
    payment_id: Optional[UUID] = None
    waived_at: Optional[datetime] = None
    waive_reason: Optional[str] = None
    version: int

    # Filled in by the router from the clock
    days_overdue: Optional[int] = None


class RentScheduleResponse(BaseSchema):
    lease_id: UUID
    items: list[ScheduleItemResponse]
    total_due_cents: int
    total_paid_cents: int
    total_late_fees_cents: int


class SchedulePaymentRequest(BaseSchema):
    amount_cents: int = Field(..., gt=0)
    method: Optional[str] = Field(None, max_length=50)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=255)


class SchedulePaymentResponse(BaseSchema):
    payment: PaymentResponse
    item: ScheduleItemResponse
    replayed: bool = False


class WaiveRequest(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=2000)
