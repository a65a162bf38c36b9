"""API Routers for the lease engine."""

from lease_engine.routers.leases import router as leases_router
from lease_engine.routers.payments import router as payments_router
from lease_engine.routers.schedule import router as schedule_router

__all__ = [
    "leases_router",
    "payments_router",
    "schedule_router",
]
