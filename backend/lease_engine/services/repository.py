"""Fresh-read loaders shared by the lease services.

Every read here bypasses the session identity map (``populate_existing``) so
a retried unit of work always validates against the committed row.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lease_engine.core.errors import NotFoundError
from lease_engine.models.lease import LeaseAgreement
from lease_engine.models.payment import Payment
from lease_engine.models.schedule import RentScheduleItem


async def load_lease(db: AsyncSession, lease_id: UUID) -> LeaseAgreement:
    result = await db.execute(
        select(LeaseAgreement)
        .where(LeaseAgreement.id == lease_id)
        .execution_options(populate_existing=True)
    )
    lease = result.scalar_one_or_none()
    if lease is None:
        raise NotFoundError(f"Lease {lease_id} not found")
    return lease


async def load_schedule_item(db: AsyncSession, lease_id: UUID, item_id: UUID) -> RentScheduleItem:
    """Load a schedule item, scoped to its lease."""
    result = await db.execute(
        select(RentScheduleItem)
        .where(RentScheduleItem.id == item_id, RentScheduleItem.lease_id == lease_id)
        .execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError(f"Schedule item {item_id} not found on lease {lease_id}")
    return item


async def load_schedule(db: AsyncSession, lease_id: UUID) -> list[RentScheduleItem]:
    result = await db.execute(
        select(RentScheduleItem)
        .where(RentScheduleItem.lease_id == lease_id)
        .order_by(RentScheduleItem.period_index)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def find_payment_by_key(db: AsyncSession, idempotency_key: str) -> Optional[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.idempotency_key == idempotency_key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
