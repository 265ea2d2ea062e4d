"""
Error Taxonomy and Classification

Application exceptions plus the classifier that maps any exception raised
behind the request boundary to an HTTP status, a stable error code and
retry advice.
"""

import enum
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.security import ErrorClassification


class ErrorCode(str, enum.Enum):
    """Error codes returned in the response envelope."""
    SUCCESS = "SUCCESS"

    # Client errors
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    CSRF_INVALID = "CSRF_INVALID"

    # Server errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_GATEWAY = "BAD_GATEWAY"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"

    # Network
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    CONNECTION_RESET = "CONNECTION_RESET"

    # Database
    DATABASE_ERROR = "DATABASE_ERROR"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"

    # AI providers
    AI_PROVIDER_ERROR = "AI_PROVIDER_ERROR"


ERROR_CODE_VALUES = {member.value for member in ErrorCode}

RETRYABLE_STATUS_CODES = {502, 503, 504}
RETRYABLE_CODES = {ErrorCode.NETWORK_ERROR.value, ErrorCode.TIMEOUT.value, ErrorCode.CONNECTION_RESET.value}

AUTH_ERROR_NAMES = {"UnauthorizedError", "TokenExpiredError", "InvalidTokenError", "AuthError"}
SESSION_ERROR_CODES = {"SESSION_EXPIRED", "SESSION_INVALID", "TOKEN_EXPIRED"}
UPSTREAM_STATUS_CODES = {
    502: ErrorCode.BAD_GATEWAY,
    503: ErrorCode.SERVICE_UNAVAILABLE,
    504: ErrorCode.GATEWAY_TIMEOUT,
}


class EdgeError(Exception):
    """
    Base exception for errors raised on purpose behind the boundary.

    `expose` marks the message as safe to show to the client.
    """
    status_code: int = 500
    code: str = ErrorCode.INTERNAL_ERROR.value
    expose: bool = False
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class UnauthorizedError(EdgeError):
    status_code = 401
    code = ErrorCode.UNAUTHORIZED.value
    expose = True
    default_message = "Authentication required"


class SessionExpiredError(EdgeError):
    status_code = 401
    code = ErrorCode.SESSION_EXPIRED.value
    expose = True
    default_message = "Session expired, please log in again"


class ForbiddenError(EdgeError):
    status_code = 403
    code = ErrorCode.FORBIDDEN.value
    expose = True
    default_message = "Insufficient permissions"


class NotFoundError(EdgeError):
    status_code = 404
    code = ErrorCode.NOT_FOUND.value
    expose = True
    default_message = "Not found"


class ValidationError(EdgeError):
    status_code = 400
    code = ErrorCode.VALIDATION_ERROR.value
    expose = True
    default_message = "Validation failed"


class RateLimitedError(EdgeError):
    status_code = 429
    code = ErrorCode.RATE_LIMITED.value
    expose = True
    default_message = "Too many requests"


class BadGatewayError(EdgeError):
    status_code = 502
    code = ErrorCode.BAD_GATEWAY.value
    default_message = "Upstream service returned an invalid response"


class ServiceUnavailableError(EdgeError):
    status_code = 503
    code = ErrorCode.SERVICE_UNAVAILABLE.value
    default_message = "Service unavailable"


class AIProviderError(EdgeError):
    status_code = 502
    code = ErrorCode.AI_PROVIDER_ERROR.value
    default_message = "AI provider request failed"


class DebugModeDisabledError(NotFoundError):
    """Raised by debug endpoints while they are disabled; answered as a plain 404."""
    expose = False
    default_message = "Debug endpoints are disabled"


def is_retryable(status_code: int, code: Optional[str] = None) -> bool:
    """
    Decide whether the client may retry a failed request.

    Only transient upstream failures (502/503/504), network errors and rate
    limiting are retryable. A 500 is not: the failed call may already have
    had side effects.

    Args:
        status_code: HTTP status code
        code: Error code

    Returns:
        bool: True if retryable
    """
    if status_code in RETRYABLE_STATUS_CODES:
        return True

    if code in RETRYABLE_CODES:
        return True

    if status_code == 429 or code == ErrorCode.RATE_LIMITED:
        return True

    return False


def _explicit_status(error: Any) -> Optional[int]:
    for attr in ("status_code", "statusCode", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _explicit_code(error: Any) -> str:
    # SQLAlchemy's own `code` is a docs link id; prefer the driver's SQLSTATE
    if isinstance(error, SQLAlchemyError):
        pgcode = getattr(getattr(error, "orig", None), "pgcode", None)
        if pgcode:
            return str(pgcode)
    code = getattr(error, "code", None)
    if isinstance(code, enum.Enum):
        code = code.value
    return str(code) if code is not None else ""


def _message(error: Any) -> str:
    message = getattr(error, "message", None)
    if not isinstance(message, str):
        detail = getattr(error, "detail", None)
        message = detail if isinstance(detail, str) else str(error)
    return message.lower()


def _contains(text: str, *needles: str) -> bool:
    return any(needle in text for needle in needles)


def _result(status_code: int, code: ErrorCode) -> ErrorClassification:
    return ErrorClassification(
        status_code=status_code,
        code=code.value,
        retryable=is_retryable(status_code, code)
    )


def classify_error(error: Any) -> ErrorClassification:
    """
    Classify an exception into a status code and error code.

    Rules are evaluated top to bottom and the first match wins. They look at
    the message text, the exception class name and any explicit status or
    code attribute carried by the exception.

    Args:
        error: Any exception

    Returns:
        ErrorClassification: status code, error code and retryable flag
    """
    message = _message(error)
    name = type(error).__name__
    lowered_name = name.lower()
    status_code = _explicit_status(error)
    code = _explicit_code(error)

    # Authentication
    if (status_code == 401 and code != ErrorCode.SESSION_EXPIRED.value) or \
            _contains(message, "unauthorized", "authentication", "not authenticated") or \
            name in AUTH_ERROR_NAMES:
        return _result(401, ErrorCode.UNAUTHORIZED)

    # Session
    if code in SESSION_ERROR_CODES or _contains(message, "session", "token expired"):
        return _result(401, ErrorCode.SESSION_EXPIRED)

    if status_code == 403 or _contains(message, "forbidden", "permission") or name == "ForbiddenError":
        return _result(403, ErrorCode.FORBIDDEN)

    if status_code == 404 or _contains(message, "not found", "does not exist"):
        return _result(404, ErrorCode.NOT_FOUND)

    if _contains(message, "validation", "invalid", "required", "missing"):
        return _result(400, ErrorCode.VALIDATION_ERROR)

    if status_code == 429 or _contains(message, "rate limit", "too many requests"):
        return _result(429, ErrorCode.RATE_LIMITED)

    # Taxonomy code carried by the exception itself
    if status_code is not None and code in ERROR_CODE_VALUES:
        return _result(status_code, ErrorCode(code))

    if status_code in UPSTREAM_STATUS_CODES:
        return _result(status_code, UPSTREAM_STATUS_CODES[status_code])

    # Network
    if _contains(message, "timeout", "timed out", "etimedout", "connection") or \
            _contains(lowered_name, "timeout", "connection", "connecterror"):
        return _result(504, ErrorCode.TIMEOUT)

    # Database
    if code.startswith("23") or "constraint" in message or isinstance(error, IntegrityError):
        return _result(400, ErrorCode.CONSTRAINT_VIOLATION)

    if isinstance(error, SQLAlchemyError):
        return _result(500, ErrorCode.DATABASE_ERROR)

    if status_code == 400:
        return _result(400, ErrorCode.BAD_REQUEST)

    return _result(500, ErrorCode.INTERNAL_ERROR)
