"""
Runtime Environment Validation Module

Validates the environment at application startup. If validation fails the
application refuses to start (exit code 1) instead of failing on the first
lease request.
"""

import sys

from pydantic import ValidationError

from lease_engine.core.config import Settings


def _fatal(*lines: str) -> None:
    for line in lines:
        print(line, file=sys.stderr)
    sys.exit(1)


def validate_environment() -> Settings:
    """
    Validate all environment-derived settings at startup.

    Must be called before the FastAPI app starts serving.

    Returns:
        Settings: Validated settings object

    Raises:
        SystemExit: If validation fails (exit code 1)
    """
    try:
        settings = Settings()
    except ValidationError as e:
        print("❌ FATAL: Environment validation failed", file=sys.stderr)
        print("\nMissing or invalid environment variables:", file=sys.stderr)
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            print(f"   • {field}: {error['msg']}", file=sys.stderr)
        _fatal("\nThe application cannot start with invalid configuration.")

    # 1. CORS: no wildcard outside debug
    if not settings.debug:
        origins = [o.strip() for o in settings.allowed_origins.split(",")]
        if "*" in origins:
            _fatal(
                "❌ FATAL: Wildcard CORS origin (*) detected in production mode.",
                "   Set ALLOWED_ORIGINS to specific domains (comma-separated).",
            )

    # 2. Database URL: PostgreSQL in production, anything SQLAlchemy accepts in debug
    if not settings.debug and not settings.database_url.startswith("postgresql"):
        _fatal(
            "❌ FATAL: DATABASE_URL must be a PostgreSQL connection string "
            "(postgresql+asyncpg://) unless DEBUG=true"
        )

    # 3. Lease policy must be usable
    positive = {
        "ACCEPTANCE_WINDOW_HOURS": settings.acceptance_window_hours,
        "SCHEDULE_PERIOD_DAYS": settings.schedule_period_days,
        "CAS_MAX_RETRIES": settings.cas_max_retries,
        "SWEEP_INTERVAL_SECONDS": settings.sweep_interval_seconds,
        "OUTBOX_BATCH_SIZE": settings.outbox_batch_size,
        "OUTBOX_VISIBILITY_TIMEOUT_SECONDS": settings.outbox_visibility_timeout_seconds,
    }
    bad = [name for name, value in positive.items() if value <= 0]
    if settings.grace_period_days < 0:
        bad.append("GRACE_PERIOD_DAYS")
    if not 0 <= settings.late_fee_rate_bps <= 10000:
        bad.append("LATE_FEE_RATE_BPS")
    if not 0 <= settings.schedule_stub_tolerance_days < settings.schedule_period_days:
        bad.append("SCHEDULE_STUB_TOLERANCE_DAYS")
    if bad:
        _fatal(f"❌ FATAL: Invalid lease policy settings: {', '.join(bad)}")

    print("✅ Environment validation passed")
    print(f"   App: {settings.app_name}")
    print(f"   Debug: {settings.debug}")
    print(f"   Acceptance window: {settings.acceptance_window_hours}h")
    print(f"   Sweeper: {'on' if settings.sweeper_enabled else 'off'} "
          f"every {settings.sweep_interval_seconds}s")

    return settings


if __name__ == "__main__":
    validate_environment()
    print("\n✅ All environment variables are valid!")
