"""Rent schedule router."""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from lease_engine.core.clock import Clock, get_clock
from lease_engine.core.database import get_db
from lease_engine.core.security import Actor, get_actor
from lease_engine.models.schedule import RentScheduleItem
from lease_engine.schemas.payment import PaymentResponse
from lease_engine.schemas.schedule import (
    RentScheduleResponse,
    ScheduleItemResponse,
    SchedulePaymentRequest,
    SchedulePaymentResponse,
    WaiveRequest,
)
from lease_engine.services.gateways import Collaborators, get_collaborators
from lease_engine.services.outbox import OutboxDispatcher, get_outbox_dispatcher
from lease_engine.services.payments import PaymentReconciler
from lease_engine.services.schedule import RentScheduleService, days_overdue

router = APIRouter(prefix="/leases/{lease_id}/rent-schedule", tags=["rent-schedule"])


def _item_response(item: RentScheduleItem, today: date) -> ScheduleItemResponse:
    data = ScheduleItemResponse.model_validate(item)
    data.days_overdue = days_overdue(item, today)
    return data


@router.get("", response_model=RentScheduleResponse)
async def get_rent_schedule(
    lease_id: UUID,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Full rent schedule with statuses derived as of now."""
    items = await RentScheduleService(db, clock).list_schedule(lease_id)
    today = clock.today()
    return RentScheduleResponse(
        lease_id=lease_id,
        items=[_item_response(item, today) for item in items],
        total_due_cents=sum(item.amount_due_cents for item in items),
        total_paid_cents=sum(item.amount_paid_cents for item in items),
        total_late_fees_cents=sum(item.late_fee_amount_cents for item in items),
    )


@router.get("/current", response_model=Optional[ScheduleItemResponse])
async def get_current_item(
    lease_id: UUID,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Earliest rent period still owing money, or null when nothing is owed."""
    item = await RentScheduleService(db, clock).current_item(lease_id)
    if item is None:
        return None
    return _item_response(item, clock.today())


@router.post(
    "/{item_id}/pay",
    response_model=SchedulePaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def pay_rent_period(
    lease_id: UUID,
    item_id: UUID,
    data: SchedulePaymentRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    collaborators: Collaborators = Depends(get_collaborators),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
    actor: Actor = Depends(get_actor),
):
    """Pay all or part of one rent period."""
    result = await PaymentReconciler(db, clock, collaborators).pay_schedule_item(
        lease_id,
        item_id,
        data.amount_cents,
        data.method,
        actor,
        idempotency_key=data.idempotency_key,
    )
    if result.replayed:
        response.status_code = status.HTTP_200_OK
    else:
        background_tasks.add_task(dispatcher.drain_safely)
    return SchedulePaymentResponse(
        payment=PaymentResponse.model_validate(result.payment),
        item=_item_response(result.item, clock.today()),
        replayed=result.replayed,
    )


@router.patch("/{item_id}/waive", response_model=ScheduleItemResponse)
async def waive_rent_period(
    lease_id: UUID,
    item_id: UUID,
    data: WaiveRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
    actor: Actor = Depends(get_actor),
):
    """Forgive the unpaid remainder of a rent period. Irreversible."""
    item = await RentScheduleService(db, clock).waive(lease_id, item_id, data.reason, actor)
    background_tasks.add_task(dispatcher.drain_safely)
    return _item_response(item, clock.today())
