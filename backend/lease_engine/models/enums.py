"""Enumeration types for the lease engine domain model."""

from enum import Enum


class LeaseStatus(str, Enum):
    """Status of a lease agreement."""
    PENDING = "PENDING"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"
    TERMINATED = "TERMINATED"
    EXPIRED = "EXPIRED"


# At most one lease per property may be in one of these
OPEN_LEASE_STATUSES = (LeaseStatus.PENDING, LeaseStatus.AWAITING_PAYMENT, LeaseStatus.ACTIVE)


class ScheduleItemStatus(str, Enum):
    """Derived status of one rent period."""
    UPCOMING = "UPCOMING"
    DUE = "DUE"
    PARTIAL = "PARTIAL"
    OVERDUE = "OVERDUE"
    PAID = "PAID"
    WAIVED = "WAIVED"


SETTLED_ITEM_STATUSES = (ScheduleItemStatus.PAID, ScheduleItemStatus.WAIVED)


class PaymentType(str, Enum):
    """What a payment was for."""
    ACCEPTANCE = "ACCEPTANCE"  # deposit + first month, one-time
    RENT = "RENT"
    LATE_FEE = "LATE_FEE"
    MAINTENANCE_FEE = "MAINTENANCE_FEE"
    OTHER = "OTHER"


AD_HOC_PAYMENT_TYPES = (PaymentType.LATE_FEE, PaymentType.MAINTENANCE_FEE, PaymentType.OTHER)


class PaymentStatus(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class ApplicationStatus(str, Enum):
    """Status of a rental application as reported by the application service."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class PropertyStatus(str, Enum):
    """Listing status pushed to the property service."""
    AVAILABLE = "AVAILABLE"
    RENTED = "RENTED"


class ActorRole(str, Enum):
    """Who performed an action. Attribution only."""
    TENANT = "TENANT"
    LANDLORD = "LANDLORD"
    MANAGER = "MANAGER"
    SYSTEM = "SYSTEM"


class NotificationEvent(str, Enum):
    LEASE_CREATED = "LEASE_CREATED"
    LEASE_ACCEPTED = "LEASE_ACCEPTED"
    LEASE_REJECTED = "LEASE_REJECTED"
    PAYMENT_DUE = "PAYMENT_DUE"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    LEASE_TERMINATED = "LEASE_TERMINATED"
    LEASE_EXPIRED = "LEASE_EXPIRED"


class AuditAction(str, Enum):
    """Actions tracked in the lease audit log."""
    LEASE_CREATED = "lease_created"
    CONTRACT_ATTACHED = "contract_attached"
    LEASE_ACCEPTED = "lease_accepted"
    LEASE_REJECTED = "lease_rejected"
    LEASE_ACTIVATED = "lease_activated"
    LEASE_TERMINATED = "lease_terminated"
    LEASE_EXPIRED = "lease_expired"
    PAYMENT_RECORDED = "payment_recorded"
    SCHEDULE_ITEM_WAIVED = "schedule_item_waived"


class JobStatus(str, Enum):
    """Status of async job in outbox."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class JobType(str, Enum):
    PROPERTY_STATUS = "property_status"
    NOTIFICATION = "notification"
