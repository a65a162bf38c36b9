"""Base schema utilities."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, ConfigDict

from lease_engine.models.enums import LeaseStatus, PaymentType, ScheduleItemStatus


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class TimestampMixin(BaseModel):
    """Mixin for created_at/updated_at timestamps."""

    created_at: datetime
    updated_at: Optional[datetime] = None


class IDMixin(BaseModel):
    """Mixin for UUID id field."""

    id: UUID


# Older clients send lower-case statuses, some under their former names
LEGACY_STATUS_ALIASES = {
    "payment_pending": LeaseStatus.AWAITING_PAYMENT.value,
    "pending_payment": LeaseStatus.AWAITING_PAYMENT.value,
    "scheduled": ScheduleItemStatus.UPCOMING.value,
}


def normalize_legacy_enum(value: Any) -> Any:
    """Map a legacy status string onto the canonical upper-case value."""
    if isinstance(value, Enum) or not isinstance(value, str):
        return value
    key = value.strip()
    return LEGACY_STATUS_ALIASES.get(key.lower(), key.upper())


LeaseStatusField = Annotated[LeaseStatus, BeforeValidator(normalize_legacy_enum)]
ScheduleItemStatusField = Annotated[ScheduleItemStatus, BeforeValidator(normalize_legacy_enum)]
PaymentTypeField = Annotated[PaymentType, BeforeValidator(normalize_legacy_enum)]
