"""
Domain exceptions and their HTTP rendering.

Services raise these instead of HTTPException so they can be exercised
outside a request; the handler registered in app.main turns them into
JSON responses with a user-facing message.
"""
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for business-rule failures surfaced to the user."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "domain_error"

    def __init__(self, detail: str, *, code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if code:
            self.code = code


class ValidationError(DomainError):
    """Malformed input (non-positive amount, empty reason...)."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class AuthorizationError(DomainError):
    """Ownership or permission violation."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "authorization_error"


class ConflictError(DomainError):
    """Single-open-session-per-operator violation."""
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class InvalidStateError(DomainError):
    """Transition requested from a state that does not allow it."""
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_state"


class PolicyViolation(DomainError):
    """Operation is allowed for the user but not through this flow."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "policy_violation"


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.code}: {exc.detail}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )
