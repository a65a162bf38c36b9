"""Domain error taxonomy and its HTTP mapping.

Services raise these; routers never translate them by hand. The single
handler registered in ``setup_exception_handlers`` turns them into
``{"detail": ..., "code": ...}`` responses.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LeaseEngineError(Exception):
    """Base class for all errors surfaced to callers."""

    code = "lease_engine_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LeaseEngineError):
    """Malformed or out-of-range input."""

    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(LeaseEngineError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(LeaseEngineError):
    """The current state does not allow the requested transition."""

    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class DeadlineExpiredError(LeaseEngineError):
    code = "deadline_expired"
    status_code = status.HTTP_410_GONE


class OverpaymentError(LeaseEngineError):
    code = "overpayment"
    status_code = status.HTTP_400_BAD_REQUEST


class PermissionDeniedError(LeaseEngineError):
    code = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN


class ConcurrencyError(LeaseEngineError):
    """Optimistic concurrency retries exhausted. Safe to retry."""

    code = "concurrency_conflict"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class CollaboratorUnavailableError(LeaseEngineError):
    code = "collaborator_unavailable"
    status_code = status.HTTP_502_BAD_GATEWAY


def setup_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(LeaseEngineError)
    async def lease_engine_error_handler(request: Request, exc: LeaseEngineError):
        headers = {"Retry-After": "1"} if isinstance(exc, ConcurrencyError) else None
        if exc.status_code >= 500:
            logger.warning(f"[API] {request.method} {request.url.path} -> {exc.code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        detail = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": detail, "code": ValidationError.code},
        )
