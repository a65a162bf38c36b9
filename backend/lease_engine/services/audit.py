"""Audit logging service."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lease_engine.core.security import Actor
from lease_engine.models.audit import LeaseAuditLog
from lease_engine.models.enums import AuditAction


class AuditService:
    """Service for creating lease audit log entries in the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        lease_id: UUID,
        action: AuditAction,
        actor: Actor,
        occurred_at: datetime,
        details: Optional[dict[str, Any]] = None,
    ) -> LeaseAuditLog:
        """Create an audit log entry."""
        entry = LeaseAuditLog(
            lease_id=lease_id,
            action=action,
            actor_id=actor.id,
            actor_role=actor.role,
            details=details or {},
            occurred_at=occurred_at,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def list_for_lease(self, lease_id: UUID) -> list[LeaseAuditLog]:
        result = await self.db.execute(
            select(LeaseAuditLog)
            .where(LeaseAuditLog.lease_id == lease_id)
            .order_by(LeaseAuditLog.occurred_at, LeaseAuditLog.created_at)
        )
        return list(result.scalars().all())
