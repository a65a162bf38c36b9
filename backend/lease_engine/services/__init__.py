"""Services for the lease engine."""

from lease_engine.services.audit import AuditService
from lease_engine.services.gateways import Collaborators, get_collaborators
from lease_engine.services.jobs import JobsService
from lease_engine.services.lease_state_machine import DeadlineStatus, LeaseStateMachine, LeaseTerms
from lease_engine.services.outbox import DispatchReport, OutboxDispatcher
from lease_engine.services.payments import PaymentReconciler
from lease_engine.services.schedule import RentScheduleService, SchedulePolicy
from lease_engine.services.sweeper import DeadlineSweeper, SweepReport

__all__ = [
    "AuditService",
    "Collaborators",
    "get_collaborators",
    "JobsService",
    "DeadlineStatus",
    "LeaseStateMachine",
    "LeaseTerms",
    "DispatchReport",
    "OutboxDispatcher",
    "PaymentReconciler",
    "RentScheduleService",
    "SchedulePolicy",
    "DeadlineSweeper",
    "SweepReport",
]
