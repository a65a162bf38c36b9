"""Lease schemas."""

from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import Field, model_validator

from lease_engine.models.enums import ActorRole, AuditAction
from lease_engine.schemas.base import BaseSchema, IDMixin, LeaseStatusField, TimestampMixin


class LeaseCreate(BaseSchema):
    """Create a lease from an approved application."""

    application_id: UUID

    start_date: date
    end_date: date

    # Money in CENTS (integers only)
    rent_amount_cents: int = Field(..., gt=0)
    security_deposit_cents: int = Field(..., gt=0)

    @model_validator(mode="after")
    def validate_dates(self):
        """End date must be after start date."""
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class ContractAttachRequest(BaseSchema):
    """Reference to a contract stored by the document service."""

    document_id: str = Field(..., min_length=1, max_length=255)


class LeaseRejectRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=2000)


class LeaseTerminateRequest(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=2000)


class LeaseResponse(BaseSchema, IDMixin, TimestampMixin):
    """Lease response."""

    application_id: UUID
    property_id: UUID
    tenant_id: UUID
    landlord_id: UUID
    status: LeaseStatusField
    start_date: date
    end_date: date
    rent_amount_cents: int
    security_deposit_cents: int
    contract_document_id: Optional[str] = None

    accepted_at: Optional[datetime] = None
    acceptance_deadline: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    activated_at: Optional[datetime] = None
    terminated_at: Optional[datetime] = None
    termination_reason: Optional[str] = None
    expired_at: Optional[datetime] = None

    deposit_paid: bool
    first_rent_paid: bool
    total_due_on_acceptance_cents: int
    total_paid_on_acceptance_cents: int
    remaining_on_acceptance_cents: int
    version: int


class LeaseListResponse(BaseSchema):
    """Response for lease list endpoint."""

    leases: list[LeaseResponse]
    total: int


class DeadlineStatusResponse(BaseSchema):
    """Acceptance deadline plus how the acceptance payment stands."""

    lease_id: UUID
    status: LeaseStatusField
    accepted_at: Optional[datetime] = None
    acceptance_deadline: Optional[datetime] = None
    seconds_remaining: Optional[int] = None
    hours_remaining: Optional[int] = None
    is_expired: bool

    security_deposit_cents: int
    first_month_rent_cents: int
    total_due_cents: int
    security_deposit_paid_cents: int
    first_month_rent_paid_cents: int
    total_paid_cents: int
    remaining_cents: int


class AuditEntryResponse(BaseSchema, IDMixin):
    lease_id: UUID
    action: AuditAction
    actor_id: Optional[UUID] = None
    actor_role: ActorRole
    details: dict[str, Any] = {}
    occurred_at: datetime
    created_at: datetime


class AuditListResponse(BaseSchema):
    entries: list[AuditEntryResponse]
    total: int
