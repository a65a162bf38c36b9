"""Caller identity resolution.

Authentication happens upstream. The gateway in front of this service
forwards the verified caller as ``X-Actor-Id`` / ``X-Actor-Role``; this module
only turns those headers into an ``Actor``. The role is attribution for audit
and notifications, never an authorization switch.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Header, HTTPException, status

from lease_engine.models.enums import ActorRole


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation."""

    id: Optional[UUID]
    role: ActorRole

    @classmethod
    def system(cls) -> "Actor":
        return cls(id=None, role=ActorRole.SYSTEM)


async def get_actor(
    x_actor_id: UUID = Header(...),
    x_actor_role: str = Header(...),
) -> Actor:
    """Resolve the already-authenticated caller from gateway headers."""
    try:
        role = ActorRole(x_actor_role.strip().upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown actor role '{x_actor_role}'",
        )
    if role == ActorRole.SYSTEM:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="SYSTEM actor cannot call the public API",
        )
    return Actor(id=x_actor_id, role=role)
