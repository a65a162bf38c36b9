"""
Rent schedule generation and status derivation.

A lease's schedule is generated once, inside the transaction that activates
it. Item status is never pushed by a timer: it is derived from the amounts
and the clock whenever an item is read, paid or swept, and the derived
snapshot (plus a one-time late fee) is persisted through CAS.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lease_engine.core.clock import Clock
from lease_engine.core.concurrency import compare_and_swap, run_optimistic
from lease_engine.core.config import Settings, get_settings
from lease_engine.core.errors import ConflictError, ValidationError
from lease_engine.core.security import Actor
from lease_engine.models.enums import (
    AuditAction,
    LeaseStatus,
    NotificationEvent,
    ScheduleItemStatus,
    SETTLED_ITEM_STATUSES,
)
from lease_engine.models.lease import LeaseAgreement
from lease_engine.models.schedule import RentScheduleItem
from lease_engine.services.audit import AuditService
from lease_engine.services.jobs import JobsService
from lease_engine.services.repository import load_lease, load_schedule, load_schedule_item

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulePolicy:
    """Billing policy knobs, all configurable."""

    period_days: int = 30
    grace_period_days: int = 5
    late_fee_rate_bps: int = 500
    stub_tolerance_days: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulePolicy":
        return cls(
            period_days=settings.schedule_period_days,
            grace_period_days=settings.grace_period_days,
            late_fee_rate_bps=settings.late_fee_rate_bps,
            stub_tolerance_days=settings.schedule_stub_tolerance_days,
        )


@dataclass(frozen=True)
class DerivedState:
    status: ScheduleItemStatus
    late_fee_amount_cents: int
    late_fee_applied: bool


def period_count(start_date: date, end_date: date, policy: SchedulePolicy) -> int:
    """Number of billing periods: ceil(term / period), ignoring a tiny trailing stub.

    A remainder of at most ``stub_tolerance_days`` is folded into the last
    period rather than billed as a full extra period.
    """
    span = (end_date - start_date).days
    if span <= 0:
        raise ValidationError("Lease term must be at least one day")
    count, remainder = divmod(span, policy.period_days)
    if count == 0 or remainder > policy.stub_tolerance_days:
        count += 1
    return count


def compute_late_fee(rent_amount_cents: int, rate_bps: int) -> int:
    """round(rent × rate), half-up, in integer cents."""
    return (rent_amount_cents * rate_bps + 5_000) // 10_000


def build_schedule(lease: LeaseAgreement, policy: SchedulePolicy) -> list[RentScheduleItem]:
    """Build (but do not persist) the full schedule for ``lease``."""
    count = period_count(lease.start_date, lease.end_date, policy)
    period = timedelta(days=policy.period_days)
    items = []
    for index in range(count):
        period_start = lease.start_date + period * index
        period_end = period_start + period
        if index == count - 1 and period_end < lease.end_date:
            # Absorbed stub: the final period runs to the lease end
            period_end = lease.end_date
        items.append(
            RentScheduleItem(
                id=uuid.uuid4(),
                lease_id=lease.id,
                period_index=index,
                period_start=period_start,
                period_end=period_end,
                due_date=period_start,
                grace_period_ends=period_start + timedelta(days=policy.grace_period_days),
                amount_due_cents=lease.rent_amount_cents,
                amount_paid_cents=0,
                status=ScheduleItemStatus.UPCOMING,
                late_fee_amount_cents=0,
                late_fee_applied=False,
                due_notified=False,
                version=1,
            )
        )
    return items


def derive_status(
    item: RentScheduleItem,
    today: date,
    rent_amount_cents: int,
    policy: SchedulePolicy,
) -> DerivedState:
    """Status of ``item`` as of ``today``.

    WAIVED is sticky. Otherwise: PAID if covered, OVERDUE once past grace
    while short, PARTIAL if something was paid, DUE from the due date on,
    else UPCOMING. The late fee is computed the first time OVERDUE is seen.
    """
    fee = item.late_fee_amount_cents
    applied = item.late_fee_applied

    if item.status == ScheduleItemStatus.WAIVED:
        return DerivedState(ScheduleItemStatus.WAIVED, fee, applied)

    if item.amount_paid_cents >= item.amount_due_cents:
        status = ScheduleItemStatus.PAID
    elif today > item.grace_period_ends:
        status = ScheduleItemStatus.OVERDUE
        if not applied:
            fee = compute_late_fee(rent_amount_cents, policy.late_fee_rate_bps)
            applied = True
    elif item.amount_paid_cents > 0:
        status = ScheduleItemStatus.PARTIAL
    elif today >= item.due_date:
        status = ScheduleItemStatus.DUE
    else:
        status = ScheduleItemStatus.UPCOMING

    return DerivedState(status, fee, applied)


def days_overdue(item: RentScheduleItem, today: date) -> Optional[int]:
    if item.status != ScheduleItemStatus.OVERDUE:
        return None
    return max(0, (today - item.due_date).days)


class RentScheduleService:
    """Generates, derives, waives and reads rent schedule items."""

    def __init__(self, db: AsyncSession, clock: Clock, settings: Optional[Settings] = None):
        self.db = db
        self.clock = clock
        self.settings = settings or get_settings()
        self.policy = SchedulePolicy.from_settings(self.settings)
        self.jobs = JobsService(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Generation (called inside the activation transaction)
    # ------------------------------------------------------------------

    async def generate(
        self,
        lease: LeaseAgreement,
        acceptance_payment_id: Optional[UUID] = None,
    ) -> list[RentScheduleItem]:
        """Create the schedule for a lease that is becoming ACTIVE.

        The first period is credited from the acceptance payment, which
        already collected the first month's rent. Runs exactly once per
        lease; the (lease_id, period_index) unique constraint backs this up
        if two activations ever race.
        """
        existing = await self.db.execute(
            select(RentScheduleItem.id).where(RentScheduleItem.lease_id == lease.id).limit(1)
        )
        if existing.first() is not None:
            raise ConflictError(f"Rent schedule for lease {lease.id} already exists")

        items = build_schedule(lease, self.policy)
        first = items[0]
        first.amount_paid_cents = first.amount_due_cents
        first.paid_at = self.clock.now()
        first.payment_id = acceptance_payment_id
        self.db.add_all(items)
        await self.db.flush()

        # Activation day may already be on or past the first due date
        today = self.clock.today()
        for item in items:
            await self.refresh(item, lease, today=today)

        logger.info(f"[SCHEDULE] Generated {len(items)} periods for lease {lease.id}")
        return items

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    async def refresh(
        self,
        item: RentScheduleItem,
        lease: LeaseAgreement,
        today: Optional[date] = None,
    ) -> RentScheduleItem:
        """Persist the derived status of ``item`` if it changed.

        Must run inside a unit of work (``run_optimistic``); raises
        ``StaleWriteError`` on a lost race like any other CAS.
        """
        today = today or self.clock.today()
        derived = derive_status(item, today, lease.rent_amount_cents, self.policy)

        changes = {}
        if derived.status != item.status:
            changes["status"] = derived.status
        if derived.late_fee_applied and not item.late_fee_applied:
            changes["late_fee_amount_cents"] = derived.late_fee_amount_cents
            changes["late_fee_applied"] = True

        becomes_payable = derived.status in (
            ScheduleItemStatus.DUE,
            ScheduleItemStatus.PARTIAL,
            ScheduleItemStatus.OVERDUE,
        )
        notify_due = becomes_payable and not item.due_notified and lease.status == LeaseStatus.ACTIVE
        if notify_due:
            changes["due_notified"] = True

        if not changes:
            return item

        await compare_and_swap(self.db, item, **changes)

        if notify_due:
            await self.jobs.enqueue_notification(
                NotificationEvent.PAYMENT_DUE,
                [lease.tenant_id],
                {
                    "lease_id": str(lease.id),
                    "schedule_item_id": str(item.id),
                    "due_date": item.due_date.isoformat(),
                    "amount_due_cents": item.remaining_cents,
                    "status": derived.status.value,
                },
                scope_key=f"schedule_item:{item.id}",
            )
        if "late_fee_applied" in changes:
            logger.info(
                f"[SCHEDULE] Item {item.id} overdue; late fee {item.late_fee_amount_cents} cents applied"
            )
        return item

    async def refresh_lease_items(self, lease: LeaseAgreement) -> list[RentScheduleItem]:
        """Refresh every item of an ACTIVE lease inside the current unit of work."""
        items = await load_schedule(self.db, lease.id)
        if lease.status != LeaseStatus.ACTIVE:
            return items
        today = self.clock.today()
        for item in items:
            await self.refresh(item, lease, today=today)
        return items

    # ------------------------------------------------------------------
    # Commands and reads (own their transaction)
    # ------------------------------------------------------------------

    async def waive(
        self,
        lease_id: UUID,
        item_id: UUID,
        reason: str,
        actor: Actor,
    ) -> RentScheduleItem:
        """Forgive the unpaid remainder of an item. Irreversible."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to waive a rent period")

        async def operation() -> RentScheduleItem:
            lease = await load_lease(self.db, lease_id)
            if lease.status != LeaseStatus.ACTIVE:
                raise ConflictError(f"Cannot waive rent on a lease in status {lease.status.value}")
            item = await load_schedule_item(self.db, lease_id, item_id)
            await self.refresh(item, lease)
            if item.status == ScheduleItemStatus.WAIVED:
                raise ConflictError("Rent period is already waived")
            if item.status == ScheduleItemStatus.PAID:
                raise ConflictError("Rent period is already paid")

            now = self.clock.now()
            forgiven = item.remaining_cents
            await compare_and_swap(
                self.db,
                item,
                status=ScheduleItemStatus.WAIVED,
                amount_due_cents=item.amount_paid_cents,
                waived_at=now,
                waive_reason=reason.strip(),
            )
            await self.audit.record(
                lease.id,
                AuditAction.SCHEDULE_ITEM_WAIVED,
                actor,
                now,
                {"schedule_item_id": str(item.id), "forgiven_cents": forgiven, "reason": reason.strip()},
            )
            return item

        return await run_optimistic(
            self.db, operation, max_retries=self.settings.cas_max_retries, label="waive rent period"
        )

    async def list_schedule(self, lease_id: UUID) -> list[RentScheduleItem]:
        """All items of a lease, with derived status brought up to date."""

        async def operation() -> list[RentScheduleItem]:
            lease = await load_lease(self.db, lease_id)
            return await self.refresh_lease_items(lease)

        return await run_optimistic(
            self.db, operation, max_retries=self.settings.cas_max_retries, label="read rent schedule"
        )

    async def current_item(self, lease_id: UUID) -> Optional[RentScheduleItem]:
        """Earliest item that still needs money."""
        items = await self.list_schedule(lease_id)
        for item in items:
            if item.status not in SETTLED_ITEM_STATUSES:
                return item
        return None
