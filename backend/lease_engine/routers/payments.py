"""Payments router."""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from lease_engine.core.clock import Clock, get_clock
from lease_engine.core.database import get_db
from lease_engine.core.security import Actor, get_actor
from lease_engine.schemas.lease import LeaseResponse
from lease_engine.schemas.payment import (
    AcceptancePaymentRequest,
    AcceptancePaymentResponse,
    AdHocPaymentCreate,
    PaymentListResponse,
    PaymentResponse,
)
from lease_engine.services.gateways import Collaborators, get_collaborators
from lease_engine.services.outbox import OutboxDispatcher, get_outbox_dispatcher
from lease_engine.services.payments import PaymentReconciler

router = APIRouter(prefix="/leases", tags=["payments"])


def get_reconciler(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    collaborators: Collaborators = Depends(get_collaborators),
) -> PaymentReconciler:
    return PaymentReconciler(db, clock, collaborators)


@router.post(
    "/{lease_id}/acceptance-payment",
    response_model=AcceptancePaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def pay_acceptance(
    lease_id: UUID,
    data: AcceptancePaymentRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
    actor: Actor = Depends(get_actor),
):
    """Pay towards the security deposit + first month's rent.

    The lease becomes ACTIVE (and its rent schedule is generated) in the same
    transaction as the payment that completes the balance. A replayed
    ``idempotency_key`` returns the original payment with 200.
    """
    result = await reconciler.apply_acceptance_payment(
        lease_id,
        data.amount_cents,
        data.method,
        data.idempotency_key,
        actor,
    )
    if result.replayed:
        response.status_code = status.HTTP_200_OK
    else:
        background_tasks.add_task(dispatcher.drain_safely)
    return AcceptancePaymentResponse(
        payment=PaymentResponse.model_validate(result.payment),
        lease=LeaseResponse.model_validate(result.lease),
        replayed=result.replayed,
    )


@router.get("/{lease_id}/payments", response_model=PaymentListResponse)
async def list_payments(
    lease_id: UUID,
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Payment ledger for a lease, newest first."""
    payments = await reconciler.list_payments(lease_id)
    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=len(payments),
    )


@router.post("/{lease_id}/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def log_payment(
    lease_id: UUID,
    data: AdHocPaymentCreate,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    actor: Actor = Depends(get_actor),
):
    """Log a late fee, maintenance fee or other payment."""
    payment = await reconciler.log_ad_hoc_payment(
        lease_id,
        data.amount_cents,
        data.type,
        data.method,
        data.description,
        actor,
    )
    return PaymentResponse.model_validate(payment)
