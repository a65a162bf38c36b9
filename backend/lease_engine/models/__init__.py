"""SQLAlchemy models for the lease engine."""

from lease_engine.models.lease import LeaseAgreement
from lease_engine.models.schedule import RentScheduleItem
from lease_engine.models.payment import Payment
from lease_engine.models.audit import LeaseAuditLog
from lease_engine.models.jobs import JobsOutbox

__all__ = [
    "LeaseAgreement",
    "RentScheduleItem",
    "Payment",
    "LeaseAuditLog",
    "JobsOutbox",
]
