"""Leases router.

Lease lifecycle endpoints. Domain errors raised by the state machine are
mapped to HTTP by the handler in ``core.errors``; mutations schedule an
outbox drain so collaborator side effects go out right after commit.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from lease_engine.core.clock import Clock, get_clock
from lease_engine.core.database import get_db
from lease_engine.core.errors import ValidationError
from lease_engine.core.security import Actor, get_actor
from lease_engine.models.enums import LeaseStatus
from lease_engine.schemas.base import normalize_legacy_enum
from lease_engine.schemas.lease import (
    AuditEntryResponse,
    AuditListResponse,
    ContractAttachRequest,
    DeadlineStatusResponse,
    LeaseCreate,
    LeaseListResponse,
    LeaseRejectRequest,
    LeaseResponse,
    LeaseTerminateRequest,
)
from lease_engine.services.audit import AuditService
from lease_engine.services.gateways import Collaborators, get_collaborators
from lease_engine.services.lease_state_machine import LeaseStateMachine, LeaseTerms
from lease_engine.services.outbox import OutboxDispatcher, get_outbox_dispatcher
from lease_engine.services.repository import load_lease

router = APIRouter(prefix="/leases", tags=["leases"])


def get_state_machine(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    collaborators: Collaborators = Depends(get_collaborators),
) -> LeaseStateMachine:
    return LeaseStateMachine(db, clock, collaborators)


@router.post("", response_model=LeaseResponse, status_code=status.HTTP_201_CREATED)
async def create_lease(
    data: LeaseCreate,
    background_tasks: BackgroundTasks,
    machine: LeaseStateMachine = Depends(get_state_machine),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
    actor: Actor = Depends(get_actor),
):
    """Create a PENDING lease from an approved application.

    - Application must exist and be APPROVED, with no lease attached
    - Property must not already have an open lease
    """
    lease = await machine.create_lease(
        data.application_id,
        LeaseTerms(
            start_date=data.start_date,
            end_date=data.end_date,
            rent_amount_cents=data.rent_amount_cents,
            security_deposit_cents=data.security_deposit_cents,
        ),
        actor,
    )
    background_tasks.add_task(dispatcher.drain_safely)
    return LeaseResponse.model_validate(lease)


@router.get("", response_model=LeaseListResponse)
async def list_leases(
    tenant_id: Optional[UUID] = None,
    landlord_id: Optional[UUID] = None,
    property_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    machine: LeaseStateMachine = Depends(get_state_machine),
):
    """List leases, newest first. ``status`` accepts legacy lower-case values."""
    lease_status = None
    if status_filter:
        try:
            lease_status = LeaseStatus(normalize_legacy_enum(status_filter))
        except ValueError:
            raise ValidationError(f"Unknown lease status '{status_filter}'")
    leases = await machine.list_leases(
        tenant_id=tenant_id,
        landlord_id=landlord_id,
        property_id=property_id,
        status=lease_status,
    )
    return LeaseListResponse(
        leases=[LeaseResponse.model_validate(lease) for lease in leases],
        total=len(leases),
    )


@router.get("/{lease_id}", response_model=LeaseResponse)
async def get_lease(
    lease_id: UUID,
    machine: LeaseStateMachine = Depends(get_state_machine),
):
    """Get a lease by ID."""
    return LeaseResponse.model_validate(await machine.get_lease(lease_id))


@router.patch("/{lease_id}/contract", response_model=LeaseResponse)
async def attach_contract(
    lease_id: UUID,
    data: ContractAttachRequest,
    machine: LeaseStateMachine = Depends(get_state_machine),
    actor: Actor = Depends(get_actor),
):
    """Attach (or replace) the contract document reference."""
    lease = await machine.attach_contract(lease_id, data.document_id, actor)
    return LeaseResponse.model_validate(lease)


@router.patch("/{lease_id}/accept", response_model=LeaseResponse)
async def accept_lease(
    lease_id: UUID,
    background_tasks: BackgroundTasks,
    machine: LeaseStateMachine = Depends(get_state_machine),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
    actor: Actor = Depends(get_actor),
):
    """Tenant accepts the lease; the acceptance payment window opens."""
    lease = await machine.tenant_accept(lease_id, actor.id)
    background_tasks.add_task(dispatcher.drain_safely)
    return LeaseResponse.model_validate(lease)


@router.patch("/{lease_id}/reject", response_model=LeaseResponse)
async def reject_lease(
    lease_id: UUID,
    background_tasks: BackgroundTasks,
    data: Optional[LeaseRejectRequest] = None,
    machine: LeaseStateMachine = Depends(get_state_machine),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
    actor: Actor = Depends(get_actor),
):
    """Tenant rejects the lease."""
    reason = data.reason if data else None
    lease = await machine.tenant_reject(lease_id, actor.id, reason)
    background_tasks.add_task(dispatcher.drain_safely)
    return LeaseResponse.model_validate(lease)


@router.patch("/{lease_id}/terminate", response_model=LeaseResponse)
async def terminate_lease(
    lease_id: UUID,
    data: LeaseTerminateRequest,
    background_tasks: BackgroundTasks,
    machine: LeaseStateMachine = Depends(get_state_machine),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
    actor: Actor = Depends(get_actor),
):
    """End an ACTIVE lease early. The property is released."""
    lease = await machine.terminate(lease_id, actor, data.reason)
    background_tasks.add_task(dispatcher.drain_safely)
    return LeaseResponse.model_validate(lease)


@router.get("/{lease_id}/deadline-status", response_model=DeadlineStatusResponse)
async def get_deadline_status(
    lease_id: UUID,
    machine: LeaseStateMachine = Depends(get_state_machine),
):
    """Time left on the acceptance deadline and the acceptance balance."""
    return DeadlineStatusResponse.model_validate(await machine.deadline_status(lease_id))


@router.get("/{lease_id}/audit", response_model=AuditListResponse)
async def get_audit_trail(
    lease_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Audit trail for a lease, oldest first."""
    await load_lease(db, lease_id)
    entries = await AuditService(db).list_for_lease(lease_id)
    return AuditListResponse(
        entries=[AuditEntryResponse.model_validate(entry) for entry in entries],
        total=len(entries),
    )
