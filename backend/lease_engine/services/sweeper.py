"""
Deadline sweeper.

Periodic background job that:
1. Terminates AWAITING_PAYMENT leases whose acceptance deadline has passed
2. Expires ACTIVE leases whose end date has been reached
3. Refreshes open rent periods that are due, persisting OVERDUE + late fees
4. Drains the jobs outbox

Each candidate is handled in its own session through the same CAS entry
points the API uses, so a sweep racing a payment is resolved by the version
check. Losing that race is normal and only logged.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lease_engine.core.clock import Clock
from lease_engine.core.concurrency import run_optimistic
from lease_engine.core.config import Settings, get_settings
from lease_engine.core.errors import ConflictError, LeaseEngineError
from lease_engine.models.enums import LeaseStatus, SETTLED_ITEM_STATUSES
from lease_engine.models.lease import LeaseAgreement
from lease_engine.models.schedule import RentScheduleItem
from lease_engine.services.gateways import Collaborators
from lease_engine.services.lease_state_machine import LeaseStateMachine
from lease_engine.services.outbox import DispatchReport, OutboxDispatcher
from lease_engine.services.repository import load_lease, load_schedule_item

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    terminated: int = 0
    expired: int = 0
    refreshed: int = 0
    skipped: int = 0
    failed: int = 0
    outbox: DispatchReport = field(default_factory=DispatchReport)


class DeadlineSweeper:
    """Runs the periodic deadline and due-date sweep."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        collaborators: Collaborators,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.collaborators = collaborators
        self.settings = settings or get_settings()
        self.dispatcher = OutboxDispatcher(
            session_factory,
            collaborators,
            batch_size=self.settings.outbox_batch_size,
            visibility_timeout_seconds=self.settings.outbox_visibility_timeout_seconds,
        )

    async def _ids(self, query) -> list[UUID]:
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def _guarded(self, report: SweepReport, label: str, target: UUID, step) -> bool:
        """Run one candidate; a failure never stops the sweep."""
        try:
            async with self.session_factory() as db:
                await step(db)
            return True
        except ConflictError as e:
            # Someone else moved the row first (payment, API call, other sweeper)
            logger.info(f"[SWEEPER] {label} {target} skipped: {e.message}")
            report.skipped += 1
        except LeaseEngineError as e:
            logger.warning(f"[SWEEPER] {label} {target} failed: {e.code}: {e.message}")
            report.failed += 1
        except Exception:
            logger.exception(f"[SWEEPER] {label} {target} failed; will retry next tick")
            report.failed += 1
        return False

    async def sweep_once(self) -> SweepReport:
        report = SweepReport()
        now = self.clock.now()
        today = now.date()

        # 1. Acceptance deadlines
        overdue_acceptance = await self._ids(
            select(LeaseAgreement.id).where(
                LeaseAgreement.status == LeaseStatus.AWAITING_PAYMENT,
                LeaseAgreement.acceptance_deadline <= now,
            )
        )
        for lease_id in overdue_acceptance:
            async def expire_deadline(db, lease_id=lease_id):
                await self._machine(db).on_deadline_expired(lease_id)

            if await self._guarded(report, "deadline", lease_id, expire_deadline):
                report.terminated += 1

        # 2. Lease end dates
        ended = await self._ids(
            select(LeaseAgreement.id).where(
                LeaseAgreement.status == LeaseStatus.ACTIVE,
                LeaseAgreement.end_date <= today,
            )
        )
        for lease_id in ended:
            async def expire_lease(db, lease_id=lease_id):
                await self._machine(db).on_lease_end_reached(lease_id)

            if await self._guarded(report, "lease end", lease_id, expire_lease):
                report.expired += 1

        # 3. Due and overdue rent periods
        due_items = await self._ids(
            select(RentScheduleItem.id)
            .join(LeaseAgreement, LeaseAgreement.id == RentScheduleItem.lease_id)
            .where(
                LeaseAgreement.status == LeaseStatus.ACTIVE,
                RentScheduleItem.due_date <= today,
                RentScheduleItem.status.not_in(SETTLED_ITEM_STATUSES),
            )
        )
        for item_id in due_items:
            async def refresh_item(db, item_id=item_id):
                await self._refresh_item(db, item_id)

            if await self._guarded(report, "rent period", item_id, refresh_item):
                report.refreshed += 1

        # 4. Deliver whatever the steps above (and the API) enqueued
        try:
            report.outbox = await self.dispatcher.drain()
        except Exception:
            logger.exception("[SWEEPER] Outbox drain failed; will retry next tick")
            report.failed += 1

        if report.terminated or report.expired or report.failed:
            logger.info(
                f"[SWEEPER] terminated={report.terminated} expired={report.expired} "
                f"refreshed={report.refreshed} skipped={report.skipped} failed={report.failed}"
            )
        return report

    def _machine(self, db: AsyncSession) -> LeaseStateMachine:
        return LeaseStateMachine(db, self.clock, self.collaborators, self.settings)

    async def _refresh_item(self, db: AsyncSession, item_id: UUID) -> None:
        machine = self._machine(db)

        async def operation() -> None:
            result = await db.execute(
                select(RentScheduleItem.lease_id).where(RentScheduleItem.id == item_id)
            )
            lease_id = result.scalar_one()
            lease = await load_lease(db, lease_id)
            if lease.status != LeaseStatus.ACTIVE:
                raise ConflictError(f"Lease {lease.id} is no longer ACTIVE")
            item = await load_schedule_item(db, lease_id, item_id)
            await machine.schedule.refresh(item, lease)

        await run_optimistic(
            db, operation, max_retries=self.settings.cas_max_retries, label="refresh rent period"
        )

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Sweep every ``sweep_interval_seconds`` until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        interval = self.settings.sweep_interval_seconds
        logger.info(f"[SWEEPER] Started; interval {interval}s")

        while not stop_event.is_set():
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("[SWEEPER] Sweep failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("[SWEEPER] Stopped")
