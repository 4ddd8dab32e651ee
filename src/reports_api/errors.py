"""
Error taxonomy for the reports backend.

Every error is an HTTPException so FastAPI renders it as `{"detail": ...}`
with the right status code, exactly like the inline HTTPExceptions used in
route handlers.
"""
from typing import Any, Dict, Optional, Sequence

import psycopg2
import psycopg2.errors
from fastapi import HTTPException, status

from src.reports_api.logging_config import get_logger

logger = get_logger(__name__)


class ServiceError(HTTPException):
    """Base class; subclasses fix the status code."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None, headers=None):
        super().__init__(
            status_code=status_code or type(self).status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class ValidationError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class Unauthorized(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Access token required"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Invalid or expired token"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class Conflict(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Record already exists"


class InternalError(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error"


class ConnectionUnavailable(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Database connection not available"


class Timeout(ServiceError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_detail = "Database query timeout. Please try again or contact support."


# SQLSTATE codes, see https://www.postgresql.org/docs/current/errcodes-appendix.html
_QUERY_CANCELED = "57014"
_UNDEFINED_FUNCTION = "42883"
_UNDEFINED_TABLE = "42P01"
_UNIQUE_VIOLATION = "23505"
_PARAMETER_CODES = ("42P02", "22023")


def _is_statement_timeout(exc: Exception, code: Optional[str], message: str) -> bool:
    # Connect-phase "timeout expired" is an OperationalError and maps to 503.
    if code == _QUERY_CANCELED or isinstance(exc, psycopg2.errors.QueryCanceled):
        return True
    return "statement timeout" in message.lower()


def _is_missing_procedure(code: Optional[str], message: str) -> bool:
    if code == _UNDEFINED_FUNCTION:
        return True
    lowered = message.lower()
    return "could not find stored procedure" in lowered or (
        ("function" in lowered or "procedure" in lowered) and "does not exist" in lowered
    )


def _is_missing_table(code: Optional[str], message: str) -> bool:
    if code == _UNDEFINED_TABLE:
        return True
    lowered = message.lower()
    return "invalid object name" in lowered or ("relation" in lowered and "does not exist" in lowered)


def _is_unique_violation(exc: Exception, code: Optional[str], message: str) -> bool:
    if code == _UNIQUE_VIOLATION or isinstance(exc, psycopg2.errors.UniqueViolation):
        return True
    lowered = message.lower()
    return "duplicate key" in lowered or "unique key" in lowered


def classify_db_error(exc: Exception, target: str, expose: bool = False) -> ServiceError:
    """
    Map a driver error raised while running `target` to a ServiceError.

    The full driver message is always logged. It is appended to the client
    message only when `expose` is true.
    """
    code = getattr(exc, "pgcode", None)
    message = str(exc).strip()

    if _is_statement_timeout(exc, code, message):
        error: ServiceError = Timeout()
    elif _is_missing_procedure(code, message):
        error = NotFound(
            f"Stored procedure '{target}' not found in database.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    elif _is_missing_table(code, message):
        error = NotFound(
            f"Table referenced by '{target}' not found in database.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    elif _is_unique_violation(exc, code, message):
        error = Conflict()
    elif code in _PARAMETER_CODES or "parameter" in message.lower():
        error = InternalError(f"Parameter mismatch in call to '{target}'.")
    elif isinstance(exc, psycopg2.OperationalError):
        error = ConnectionUnavailable()
    else:
        error = InternalError(f"Failed to execute '{target}'.")

    logger.error(
        "Database error in %s classified as %s (sqlstate=%s): %s",
        target,
        type(error).__name__,
        code,
        message,
    )
    if expose and message:
        error.detail = f"{error.detail} {message}"
    return error


# Location prefixes FastAPI adds to request validation errors.
_LOCATION_ROOTS = ("body", "query", "path", "header", "cookie")


def validation_message(errors: Sequence[Dict[str, Any]]) -> str:
    """Render the first request validation error as 'field: message'."""
    if not errors:
        return ValidationError.default_detail
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in _LOCATION_ROOTS)
    message = str(first.get("msg") or ValidationError.default_detail)
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{field}: {message}" if field else message
