"""
Payment reconciliation.

Applies money either to the one-time acceptance payment (deposit + first
month) or to a single rent schedule item. Each call is one transaction: the
ledger row, the counter update, the audit entry and the outbox jobs commit
together or not at all.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lease_engine.core.clock import Clock
from lease_engine.core.concurrency import StaleWriteError, compare_and_swap, run_optimistic
from lease_engine.core.config import Settings, get_settings
from lease_engine.core.errors import (
    ConflictError,
    DeadlineExpiredError,
    OverpaymentError,
    ValidationError,
)
from lease_engine.core.security import Actor
from lease_engine.models.enums import (
    AD_HOC_PAYMENT_TYPES,
    AuditAction,
    LeaseStatus,
    NotificationEvent,
    PaymentStatus,
    PaymentType,
    ScheduleItemStatus,
)
from lease_engine.models.lease import LeaseAgreement
from lease_engine.models.payment import Payment
from lease_engine.models.schedule import RentScheduleItem
from lease_engine.services.gateways import Collaborators
from lease_engine.services.lease_state_machine import DEADLINE_TERMINATION_REASON, LeaseStateMachine
from lease_engine.services.repository import (
    find_payment_by_key,
    load_lease,
    load_schedule_item,
)

logger = logging.getLogger(__name__)


@dataclass
class AcceptancePaymentResult:
    payment: Payment
    lease: LeaseAgreement
    replayed: bool = False


@dataclass
class SchedulePaymentResult:
    payment: Payment
    item: RentScheduleItem
    replayed: bool = False


class PaymentReconciler:
    """Records payments and moves the counters they affect."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        collaborators: Collaborators,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings or get_settings()
        self.leases = LeaseStateMachine(db, clock, collaborators, self.settings)
        self.schedule = self.leases.schedule
        self.jobs = self.leases.jobs
        self.audit = self.leases.audit

    async def _run(self, operation, label: str):
        return await run_optimistic(
            self.db, operation, max_retries=self.settings.cas_max_retries, label=label
        )

    async def _replay(
        self,
        idempotency_key: Optional[str],
        lease_id: UUID,
        amount_cents: int,
        payment_type: PaymentType,
        schedule_item_id: Optional[UUID] = None,
    ) -> Optional[Payment]:
        """Return the payment already recorded under ``idempotency_key``, if any."""
        if not idempotency_key:
            return None
        prior = await find_payment_by_key(self.db, idempotency_key)
        if prior is None:
            return None
        if (
            prior.lease_id != lease_id
            or prior.amount_cents != amount_cents
            or prior.type != payment_type
            or prior.schedule_item_id != schedule_item_id
        ):
            raise ConflictError(f"Idempotency key '{idempotency_key}' was used for a different payment")
        logger.info(f"[PAYMENT] Replayed idempotency key {idempotency_key} -> payment {prior.id}")
        return prior

    async def _record(self, payment: Payment) -> Payment:
        self.db.add(payment)
        try:
            await self.db.flush()
        except IntegrityError as e:
            # A concurrent request committed the same idempotency key; retry
            # from a fresh read so it is replayed.
            raise StaleWriteError(f"payments:idempotency_key={payment.idempotency_key}") from e
        return payment

    async def _payment_received(self, lease: LeaseAgreement, payment: Payment, extra: dict) -> None:
        await self.jobs.enqueue_notification(
            NotificationEvent.PAYMENT_RECEIVED,
            [lease.tenant_id, lease.landlord_id],
            {
                "lease_id": str(lease.id),
                "payment_id": str(payment.id),
                "payment_type": payment.type.value,
                "amount_cents": payment.amount_cents,
                **extra,
            },
            scope_key=f"payment:{payment.id}",
        )

    # ------------------------------------------------------------------
    # Acceptance payment
    # ------------------------------------------------------------------

    async def apply_acceptance_payment(
        self,
        lease_id: UUID,
        amount_cents: int,
        method: Optional[str],
        idempotency_key: Optional[str],
        actor: Actor,
    ) -> AcceptancePaymentResult:
        """Credit the deposit + first-month balance; activate when fully paid."""
        if amount_cents <= 0:
            raise ValidationError("Payment amount must be positive")

        async def operation() -> AcceptancePaymentResult:
            prior = await self._replay(idempotency_key, lease_id, amount_cents, PaymentType.ACCEPTANCE)
            if prior is not None:
                return AcceptancePaymentResult(prior, await load_lease(self.db, lease_id), replayed=True)

            lease = await load_lease(self.db, lease_id)
            now = self.clock.now()
            if lease.status == LeaseStatus.TERMINATED and lease.termination_reason == DEADLINE_TERMINATION_REASON:
                raise DeadlineExpiredError(f"Acceptance deadline for lease {lease.id} has passed")
            if lease.status != LeaseStatus.AWAITING_PAYMENT:
                raise ConflictError(f"Lease {lease.id} is {lease.status.value}, not AWAITING_PAYMENT")
            if lease.acceptance_deadline is None or now >= lease.acceptance_deadline:
                raise DeadlineExpiredError(f"Acceptance deadline for lease {lease.id} has passed")

            remaining = lease.remaining_on_acceptance_cents
            if amount_cents > remaining:
                raise OverpaymentError(
                    f"Payment of {amount_cents} cents exceeds remaining acceptance balance of {remaining} cents"
                )

            payment = await self._record(
                Payment(
                    lease_id=lease.id,
                    amount_cents=amount_cents,
                    type=PaymentType.ACCEPTANCE,
                    status=PaymentStatus.COMPLETED,
                    payment_date=now,
                    method=method,
                    description="Security deposit and first month's rent",
                    idempotency_key=idempotency_key,
                    recorded_by=actor.id,
                )
            )

            total_paid = lease.total_paid_on_acceptance_cents + amount_cents
            fully_paid = total_paid >= lease.total_due_on_acceptance_cents
            await compare_and_swap(
                self.db,
                lease,
                total_paid_on_acceptance_cents=total_paid,
                deposit_paid=total_paid >= lease.security_deposit_cents,
                first_rent_paid=fully_paid,
            )
            await self.audit.record(
                lease.id,
                AuditAction.PAYMENT_RECORDED,
                actor,
                now,
                {
                    "payment_id": str(payment.id),
                    "type": PaymentType.ACCEPTANCE.value,
                    "amount_cents": amount_cents,
                    "total_paid_on_acceptance_cents": total_paid,
                },
            )
            await self._payment_received(
                lease,
                payment,
                {"remaining_cents": lease.remaining_on_acceptance_cents, "fully_paid": fully_paid},
            )

            if fully_paid:
                await self.leases.activate(lease, payment.id)
            return AcceptancePaymentResult(payment, lease)

        result = await self._run(operation, "apply acceptance payment")
        if not result.replayed:
            logger.info(
                f"[PAYMENT] Acceptance payment {result.payment.id} of {amount_cents} cents on lease {lease_id}; "
                f"lease is {result.lease.status.value}"
            )
        return result

    # ------------------------------------------------------------------
    # Rent schedule payments
    # ------------------------------------------------------------------

    async def pay_schedule_item(
        self,
        lease_id: UUID,
        item_id: UUID,
        amount_cents: int,
        method: Optional[str],
        actor: Actor,
        idempotency_key: Optional[str] = None,
    ) -> SchedulePaymentResult:
        """Apply a (possibly partial) payment to one rent period."""
        if amount_cents <= 0:
            raise ValidationError("Payment amount must be positive")

        async def operation() -> SchedulePaymentResult:
            prior = await self._replay(idempotency_key, lease_id, amount_cents, PaymentType.RENT, item_id)
            if prior is not None:
                return SchedulePaymentResult(
                    prior, await load_schedule_item(self.db, lease_id, item_id), replayed=True
                )

            lease = await load_lease(self.db, lease_id)
            if lease.status != LeaseStatus.ACTIVE:
                raise ConflictError(f"Cannot pay rent on a lease in status {lease.status.value}")
            item = await load_schedule_item(self.db, lease_id, item_id)
            if item.status == ScheduleItemStatus.WAIVED:
                raise ConflictError("Rent period has been waived")
            remaining = item.remaining_cents
            if amount_cents > remaining:
                raise OverpaymentError(
                    f"Payment of {amount_cents} cents exceeds remaining balance of {remaining} cents"
                )

            now = self.clock.now()
            payment = await self._record(
                Payment(
                    lease_id=lease.id,
                    schedule_item_id=item.id,
                    amount_cents=amount_cents,
                    type=PaymentType.RENT,
                    status=PaymentStatus.COMPLETED,
                    payment_date=now,
                    method=method,
                    description=f"Rent for {item.period_start.isoformat()} to {item.period_end.isoformat()}",
                    idempotency_key=idempotency_key,
                    recorded_by=actor.id,
                )
            )

            amount_paid = item.amount_paid_cents + amount_cents
            changes = {"amount_paid_cents": amount_paid}
            if amount_paid >= item.amount_due_cents:
                changes.update(paid_at=now, payment_id=payment.id)
            await compare_and_swap(self.db, item, **changes)
            await self.schedule.refresh(item, lease)

            await self.audit.record(
                lease.id,
                AuditAction.PAYMENT_RECORDED,
                actor,
                now,
                {
                    "payment_id": str(payment.id),
                    "type": PaymentType.RENT.value,
                    "schedule_item_id": str(item.id),
                    "amount_cents": amount_cents,
                },
            )
            await self._payment_received(
                lease,
                payment,
                {
                    "schedule_item_id": str(item.id),
                    "remaining_cents": item.remaining_cents,
                    "item_status": item.status.value,
                },
            )
            return SchedulePaymentResult(payment, item)

        result = await self._run(operation, "pay rent period")
        if not result.replayed:
            logger.info(
                f"[PAYMENT] Rent payment {result.payment.id} of {amount_cents} cents on item {item_id}; "
                f"item is {result.item.status.value}"
            )
        return result

    # ------------------------------------------------------------------
    # Ad-hoc payments
    # ------------------------------------------------------------------

    async def log_ad_hoc_payment(
        self,
        lease_id: UUID,
        amount_cents: int,
        payment_type: PaymentType,
        method: Optional[str],
        description: Optional[str],
        actor: Actor,
    ) -> Payment:
        """Record a late fee, maintenance fee or other charge. No schedule effect."""
        if payment_type not in AD_HOC_PAYMENT_TYPES:
            raise ValidationError(
                f"Payment type {payment_type.value} cannot be logged ad hoc; "
                f"expected one of {', '.join(t.value for t in AD_HOC_PAYMENT_TYPES)}"
            )
        if amount_cents <= 0:
            raise ValidationError("Payment amount must be positive")

        async def operation() -> Payment:
            lease = await load_lease(self.db, lease_id)
            if lease.activated_at is None:
                raise ConflictError(f"Lease {lease.id} never became active; cannot log {payment_type.value}")

            now = self.clock.now()
            payment = await self._record(
                Payment(
                    lease_id=lease.id,
                    amount_cents=amount_cents,
                    type=payment_type,
                    status=PaymentStatus.COMPLETED,
                    payment_date=now,
                    method=method,
                    description=description,
                    recorded_by=actor.id,
                )
            )
            await self.audit.record(
                lease.id,
                AuditAction.PAYMENT_RECORDED,
                actor,
                now,
                {"payment_id": str(payment.id), "type": payment_type.value, "amount_cents": amount_cents},
            )
            return payment

        return await self._run(operation, "log ad-hoc payment")

    async def list_payments(self, lease_id: UUID) -> list[Payment]:
        await load_lease(self.db, lease_id)
        result = await self.db.execute(
            select(Payment)
            .where(Payment.lease_id == lease_id)
            .order_by(Payment.payment_date.desc(), Payment.created_at.desc())
        )
        return list(result.scalars().all())
