"""Lease Engine - FastAPI Application Entry Point."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lease_engine.core.clock import get_clock
from lease_engine.core.config import get_settings
from lease_engine.core.database import get_sessionmaker
from lease_engine.core.env_validation import validate_environment
from lease_engine.core.errors import setup_exception_handlers
from lease_engine.routers import leases_router, payments_router, schedule_router
from lease_engine.services.gateways import get_collaborators
from lease_engine.services.sweeper import DeadlineSweeper

# CRITICAL: Validate environment before proceeding
# This will hard-fail (exit 1) if required configuration is invalid
validate_environment()

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    stop_event = asyncio.Event()
    sweeper_task = None
    if settings.sweeper_enabled:
        sweeper = DeadlineSweeper(get_sessionmaker(), get_clock(), get_collaborators(), settings)
        sweeper_task = asyncio.create_task(sweeper.run_forever(stop_event))
    else:
        logger.info("[SWEEPER] Disabled by configuration")

    yield

    # Shutdown
    stop_event.set()
    if sweeper_task is not None:
        await sweeper_task


app = FastAPI(
    title=settings.app_name,
    description="Lease lifecycle and rent-schedule engine: acceptance deadlines, payment reconciliation and derived rent status.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS - Dynamically configured from ALLOWED_ORIGINS environment variable
# In production, wildcard (*) is blocked by env_validation.py
allowed_origins = [origin.strip() for origin in settings.allowed_origins.split(",")]

# Log resolved CORS origins at startup for visibility
print(f"🔒 CORS configured with origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

# API v1 routers
app.include_router(leases_router, prefix=settings.api_v1_prefix)
app.include_router(payments_router, prefix=settings.api_v1_prefix)
app.include_router(schedule_router, prefix=settings.api_v1_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}
