"""
Lease state machine.

    PENDING ──tenant_accept──▶ AWAITING_PAYMENT ──acceptance paid──▶ ACTIVE
       │                             │                                  │  │
  tenant_reject                deadline expired                  terminate  end date
       ▼                             ▼                                  ▼  ▼
    REJECTED                     TERMINATED                   TERMINATED  EXPIRED

Every edge is a version-checked UPDATE run through ``run_optimistic``. A
writer that loses the race re-reads the lease and re-validates, so an edge
whose source state is gone (say, the sweeper terminated the lease first)
fails with ``ConflictError`` instead of looping. Collaborator side effects
are enqueued on the outbox in the same transaction.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lease_engine.core.clock import Clock
from lease_engine.core.concurrency import compare_and_swap, run_optimistic
from lease_engine.core.config import Settings, get_settings
from lease_engine.core.errors import (
    ConflictError,
    DeadlineExpiredError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from lease_engine.core.security import Actor
from lease_engine.models.enums import (
    ActorRole,
    ApplicationStatus,
    AuditAction,
    LeaseStatus,
    NotificationEvent,
    OPEN_LEASE_STATUSES,
    PropertyStatus,
    PaymentType,
)
from lease_engine.models.lease import LeaseAgreement
from lease_engine.models.payment import Payment
from lease_engine.services.audit import AuditService
from lease_engine.services.gateways import Collaborators
from lease_engine.services.jobs import JobsService
from lease_engine.services.repository import load_lease
from lease_engine.services.schedule import RentScheduleService

logger = logging.getLogger(__name__)

DEADLINE_TERMINATION_REASON = "acceptance payment deadline expired"


@dataclass(frozen=True)
class LeaseTerms:
    start_date: date
    end_date: date
    rent_amount_cents: int
    security_deposit_cents: int


@dataclass(frozen=True)
class DeadlineStatus:
    """Acceptance-deadline and acceptance-payment view of a lease."""

    lease_id: UUID
    status: LeaseStatus
    accepted_at: Optional[datetime]
    acceptance_deadline: Optional[datetime]
    seconds_remaining: Optional[int]
    hours_remaining: Optional[int]
    is_expired: bool
    security_deposit_cents: int
    first_month_rent_cents: int
    total_due_cents: int
    security_deposit_paid_cents: int
    first_month_rent_paid_cents: int
    total_paid_cents: int
    remaining_cents: int


class LeaseStateMachine:
    """Owns every LeaseAgreement transition and its preconditions."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        collaborators: Collaborators,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock
        self.collaborators = collaborators
        self.settings = settings or get_settings()
        self.schedule = RentScheduleService(db, clock, self.settings)
        self.jobs = JobsService(db)
        self.audit = AuditService(db)

    async def _run(self, operation, label: str):
        return await run_optimistic(
            self.db, operation, max_retries=self.settings.cas_max_retries, label=label
        )

    async def _notify(
        self,
        event: NotificationEvent,
        lease: LeaseAgreement,
        recipients: list[UUID],
        extra: Optional[dict] = None,
        scope_key: Optional[str] = None,
    ) -> None:
        await self.jobs.enqueue_notification(
            event,
            recipients,
            {
                "lease_id": str(lease.id),
                "property_id": str(lease.property_id),
                "status": lease.status.value,
                **(extra or {}),
            },
            scope_key=scope_key or f"lease:{lease.id}",
        )

    # ------------------------------------------------------------------
    # Public transitions
    # ------------------------------------------------------------------

    async def create_lease(
        self,
        approved_application_id: UUID,
        terms: LeaseTerms,
        actor: Actor,
    ) -> LeaseAgreement:
        """Create a PENDING lease from an approved, unattached application."""
        application = await self.collaborators.applications.get_application(approved_application_id)
        if application is None:
            raise NotFoundError(f"Application {approved_application_id} not found")
        if application.status != ApplicationStatus.APPROVED:
            raise ConflictError(
                f"Application {approved_application_id} is {application.status.value}, not APPROVED"
            )

        attached = await self.db.execute(
            select(LeaseAgreement.id).where(LeaseAgreement.application_id == application.id)
        )
        if attached.first() is not None:
            raise ConflictError(f"Application {application.id} already has a lease")

        if terms.start_date >= terms.end_date:
            raise ValidationError("start_date must be before end_date")
        if terms.rent_amount_cents <= 0:
            raise ValidationError("rent_amount_cents must be positive")
        if terms.security_deposit_cents <= 0:
            raise ValidationError("security_deposit_cents must be positive")

        open_lease = await self.db.execute(
            select(LeaseAgreement.id).where(
                LeaseAgreement.property_id == application.property_id,
                LeaseAgreement.status.in_(OPEN_LEASE_STATUSES),
            )
        )
        if open_lease.first() is not None:
            raise ConflictError(f"Property {application.property_id} already has an open lease")

        now = self.clock.now()
        lease = LeaseAgreement(
            application_id=application.id,
            property_id=application.property_id,
            tenant_id=application.tenant_id,
            landlord_id=application.landlord_id,
            status=LeaseStatus.PENDING,
            start_date=terms.start_date,
            end_date=terms.end_date,
            rent_amount_cents=terms.rent_amount_cents,
            security_deposit_cents=terms.security_deposit_cents,
            total_due_on_acceptance_cents=terms.security_deposit_cents + terms.rent_amount_cents,
            total_paid_on_acceptance_cents=0,
            deposit_paid=False,
            first_rent_paid=False,
            version=1,
        )
        try:
            self.db.add(lease)
            await self.db.flush()
            await self.audit.record(
                lease.id,
                AuditAction.LEASE_CREATED,
                actor,
                now,
                {"application_id": str(application.id), "rent_amount_cents": terms.rent_amount_cents},
            )
            await self._notify(
                NotificationEvent.LEASE_CREATED,
                lease,
                [lease.tenant_id],
                {"start_date": terms.start_date.isoformat(), "end_date": terms.end_date.isoformat()},
            )
            await self.db.commit()
        except IntegrityError:
            # Lost a race on application_id or the open-lease-per-property index
            await self.db.rollback()
            raise ConflictError(
                f"Property {application.property_id} or application {application.id} already has an open lease"
            )
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"[LEASE] Created {lease.id} for property {lease.property_id}")
        return lease

    async def attach_contract(self, lease_id: UUID, document_id: str, actor: Actor) -> LeaseAgreement:
        """Set or replace the contract document reference."""
        if not document_id or not str(document_id).strip():
            raise ValidationError("document_id is required")
        document_id = str(document_id).strip()

        async def operation() -> LeaseAgreement:
            lease = await load_lease(self.db, lease_id)
            if lease.status not in (LeaseStatus.PENDING, LeaseStatus.AWAITING_PAYMENT):
                raise ConflictError(f"Cannot attach a contract to a lease in status {lease.status.value}")
            if lease.contract_document_id == document_id:
                return lease
            previous = lease.contract_document_id
            await compare_and_swap(self.db, lease, contract_document_id=document_id)
            await self.audit.record(
                lease.id,
                AuditAction.CONTRACT_ATTACHED,
                actor,
                self.clock.now(),
                {"document_id": document_id, "replaced": previous},
            )
            return lease

        return await self._run(operation, "attach contract")

    async def tenant_accept(self, lease_id: UUID, tenant_id: UUID) -> LeaseAgreement:
        """Tenant accepts; the acceptance-payment clock starts now."""

        async def operation() -> LeaseAgreement:
            lease = await load_lease(self.db, lease_id)
            if lease.tenant_id != tenant_id:
                raise PermissionDeniedError("Only the lease tenant can accept this lease")
            if lease.status != LeaseStatus.PENDING:
                raise ConflictError(f"Cannot accept a lease in status {lease.status.value}")

            now = self.clock.now()
            deadline = now + timedelta(hours=self.settings.acceptance_window_hours)
            await compare_and_swap(
                self.db,
                lease,
                status=LeaseStatus.AWAITING_PAYMENT,
                accepted_at=now,
                acceptance_deadline=deadline,
            )
            await self.audit.record(
                lease.id,
                AuditAction.LEASE_ACCEPTED,
                Actor(id=tenant_id, role=ActorRole.TENANT),
                now,
                {"acceptance_deadline": deadline.isoformat()},
            )
            await self._notify(
                NotificationEvent.LEASE_ACCEPTED,
                lease,
                [lease.landlord_id, lease.tenant_id],
                {
                    "acceptance_deadline": deadline.isoformat(),
                    "total_due_on_acceptance_cents": lease.total_due_on_acceptance_cents,
                },
            )
            return lease

        lease = await self._run(operation, "accept lease")
        logger.info(f"[LEASE] {lease.id} accepted; payment due by {lease.acceptance_deadline.isoformat()}")
        return lease

    async def tenant_reject(self, lease_id: UUID, tenant_id: UUID, reason: Optional[str]) -> LeaseAgreement:
        """Tenant declines. The property was never reserved, so it is left alone."""

        async def operation() -> LeaseAgreement:
            lease = await load_lease(self.db, lease_id)
            if lease.tenant_id != tenant_id:
                raise PermissionDeniedError("Only the lease tenant can reject this lease")
            if lease.status != LeaseStatus.PENDING:
                raise ConflictError(f"Cannot reject a lease in status {lease.status.value}")

            now = self.clock.now()
            await compare_and_swap(
                self.db,
                lease,
                status=LeaseStatus.REJECTED,
                rejected_at=now,
                rejection_reason=reason,
            )
            await self.audit.record(
                lease.id,
                AuditAction.LEASE_REJECTED,
                Actor(id=tenant_id, role=ActorRole.TENANT),
                now,
                {"reason": reason},
            )
            await self._notify(NotificationEvent.LEASE_REJECTED, lease, [lease.landlord_id], {"reason": reason})
            return lease

        return await self._run(operation, "reject lease")

    async def terminate(self, lease_id: UUID, actor: Actor, reason: str) -> LeaseAgreement:
        """End an ACTIVE lease early and release the property."""
        if not reason or not reason.strip():
            raise ValidationError("A termination reason is required")

        async def operation() -> LeaseAgreement:
            lease = await load_lease(self.db, lease_id)
            if lease.status != LeaseStatus.ACTIVE:
                raise ConflictError(f"Cannot terminate a lease in status {lease.status.value}")
            now = self.clock.now()
            await compare_and_swap(
                self.db,
                lease,
                status=LeaseStatus.TERMINATED,
                terminated_at=now,
                termination_reason=reason.strip(),
            )
            await self._retire(lease, actor, AuditAction.LEASE_TERMINATED, NotificationEvent.LEASE_TERMINATED,
                               now, {"reason": reason.strip()})
            return lease

        return await self._run(operation, "terminate lease")

    # ------------------------------------------------------------------
    # Internal transitions (reconciler / sweeper)
    # ------------------------------------------------------------------

    async def activate(
        self,
        lease: LeaseAgreement,
        acceptance_payment_id: Optional[UUID] = None,
    ) -> LeaseAgreement:
        """AWAITING_PAYMENT -> ACTIVE inside the caller's unit of work.

        The deadline is re-checked here against the clock; the caller's view
        of it is not trusted. ``acceptance_payment_id`` is the payment that
        completed the balance; the latest acceptance payment when omitted.
        """
        if lease.status != LeaseStatus.AWAITING_PAYMENT:
            raise ConflictError(f"Cannot activate a lease in status {lease.status.value}")
        now = self.clock.now()
        if lease.acceptance_deadline is None or now >= lease.acceptance_deadline:
            raise DeadlineExpiredError(f"Acceptance deadline for lease {lease.id} has passed")
        if not (lease.deposit_paid and lease.first_rent_paid):
            raise ConflictError("Deposit and first month's rent must be paid before activation")

        await compare_and_swap(self.db, lease, status=LeaseStatus.ACTIVE, activated_at=now)
        if acceptance_payment_id is None:
            acceptance_payment_id = await self._latest_acceptance_payment_id(lease.id)
        items = await self.schedule.generate(lease, acceptance_payment_id)
        await self.jobs.enqueue_property_status(lease.id, lease.property_id, PropertyStatus.RENTED)
        await self.audit.record(
            lease.id,
            AuditAction.LEASE_ACTIVATED,
            Actor.system(),
            now,
            {"schedule_periods": len(items)},
        )
        logger.info(f"[LEASE] {lease.id} ACTIVE with {len(items)} rent periods")
        return lease

    async def _latest_acceptance_payment_id(self, lease_id: UUID) -> Optional[UUID]:
        result = await self.db.execute(
            select(Payment.id)
            .where(Payment.lease_id == lease_id, Payment.type == PaymentType.ACCEPTANCE)
            .order_by(Payment.payment_date.desc(), Payment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def on_acceptance_payment_complete(self, lease_id: UUID) -> LeaseAgreement:
        """Activate a fully paid lease in its own transaction."""

        async def operation() -> LeaseAgreement:
            lease = await load_lease(self.db, lease_id)
            return await self.activate(lease)

        return await self._run(operation, "activate lease")

    async def on_deadline_expired(self, lease_id: UUID) -> LeaseAgreement:
        """AWAITING_PAYMENT past its deadline -> TERMINATED."""

        async def operation() -> LeaseAgreement:
            lease = await load_lease(self.db, lease_id)
            if lease.status != LeaseStatus.AWAITING_PAYMENT:
                raise ConflictError(f"Lease {lease.id} is {lease.status.value}, not AWAITING_PAYMENT")
            now = self.clock.now()
            if lease.acceptance_deadline is None or now < lease.acceptance_deadline:
                raise ConflictError(f"Acceptance deadline for lease {lease.id} has not passed")
            await compare_and_swap(
                self.db,
                lease,
                status=LeaseStatus.TERMINATED,
                terminated_at=now,
                termination_reason=DEADLINE_TERMINATION_REASON,
            )
            await self._retire(
                lease,
                Actor.system(),
                AuditAction.LEASE_TERMINATED,
                NotificationEvent.LEASE_TERMINATED,
                now,
                {"reason": DEADLINE_TERMINATION_REASON,
                 "total_paid_on_acceptance_cents": lease.total_paid_on_acceptance_cents},
            )
            return lease

        return await self._run(operation, "expire acceptance deadline")

    async def on_lease_end_reached(self, lease_id: UUID) -> LeaseAgreement:
        """ACTIVE past its end date -> EXPIRED."""

        async def operation() -> LeaseAgreement:
            lease = await load_lease(self.db, lease_id)
            if lease.status != LeaseStatus.ACTIVE:
                raise ConflictError(f"Lease {lease.id} is {lease.status.value}, not ACTIVE")
            now = self.clock.now()
            if lease.end_date > now.date():
                raise ConflictError(f"Lease {lease.id} has not reached its end date")
            await compare_and_swap(self.db, lease, status=LeaseStatus.EXPIRED, expired_at=now)
            await self._retire(
                lease, Actor.system(), AuditAction.LEASE_EXPIRED, NotificationEvent.LEASE_EXPIRED, now,
                {"end_date": lease.end_date.isoformat()},
            )
            return lease

        return await self._run(operation, "expire lease")

    async def _retire(
        self,
        lease: LeaseAgreement,
        actor: Actor,
        action: AuditAction,
        event: NotificationEvent,
        now: datetime,
        details: dict,
    ) -> None:
        """Shared tail of every transition into a terminal state."""
        await self.jobs.enqueue_property_status(lease.id, lease.property_id, PropertyStatus.AVAILABLE)
        await self.audit.record(lease.id, action, actor, now, details)
        await self._notify(event, lease, [lease.tenant_id, lease.landlord_id], details)
        logger.info(f"[LEASE] {lease.id} -> {lease.status.value} ({actor.role.value})")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_lease(self, lease_id: UUID) -> LeaseAgreement:
        return await load_lease(self.db, lease_id)

    async def list_leases(
        self,
        tenant_id: Optional[UUID] = None,
        landlord_id: Optional[UUID] = None,
        property_id: Optional[UUID] = None,
        status: Optional[LeaseStatus] = None,
    ) -> list[LeaseAgreement]:
        query = select(LeaseAgreement)
        if tenant_id:
            query = query.where(LeaseAgreement.tenant_id == tenant_id)
        if landlord_id:
            query = query.where(LeaseAgreement.landlord_id == landlord_id)
        if property_id:
            query = query.where(LeaseAgreement.property_id == property_id)
        if status:
            query = query.where(LeaseAgreement.status == status)
        query = query.order_by(LeaseAgreement.created_at.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def deadline_status(self, lease_id: UUID) -> DeadlineStatus:
        lease = await load_lease(self.db, lease_id)
        now = self.clock.now()
        deadline = lease.acceptance_deadline

        seconds_remaining = None
        hours_remaining = None
        if deadline is not None and lease.status == LeaseStatus.AWAITING_PAYMENT:
            seconds_remaining = max(0, int((deadline - now).total_seconds()))
            hours_remaining = seconds_remaining // 3600

        paid = lease.total_paid_on_acceptance_cents
        deposit_paid = min(paid, lease.security_deposit_cents)
        return DeadlineStatus(
            lease_id=lease.id,
            status=lease.status,
            accepted_at=lease.accepted_at,
            acceptance_deadline=deadline,
            seconds_remaining=seconds_remaining,
            hours_remaining=hours_remaining,
            is_expired=deadline is not None and lease.activated_at is None and now >= deadline,
            security_deposit_cents=lease.security_deposit_cents,
            first_month_rent_cents=lease.rent_amount_cents,
            total_due_cents=lease.total_due_on_acceptance_cents,
            security_deposit_paid_cents=deposit_paid,
            first_month_rent_paid_cents=paid - deposit_paid,
            total_paid_cents=paid,
            remaining_cents=lease.remaining_on_acceptance_cents,
        )
