"""
Rate limiting using slowapi.

Rejections are answered with the standard 429 RATE_LIMITED envelope,
including CORS headers so the browser can read it.
"""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import Response

from core.config import Settings, get_settings
from core.cors import CorsOriginGuard
from core.errors import ErrorCode
from core.logger import get_logger
from core.responses import error_response, generate_request_id
from core.sanitization import client_message

logger = get_logger(__name__)
settings = get_settings()

DEVELOPMENT_RATE_LIMIT = "10000/minute"


def rate_limit_for(app_settings: Settings) -> str:
    """
    Rate limit string for the given settings.

    Development environments get a much higher limit.
    """
    if app_settings.DEBUG or app_settings.ENVIRONMENT.lower() in ["development", "dev", "local"]:
        return DEVELOPMENT_RATE_LIMIT
    return f"{app_settings.RATE_LIMIT_PER_MINUTE}/minute"


rate_limit = rate_limit_for(settings)


def configure_rate_limit(app_settings: Settings) -> str:
    """Apply the limit derived from the application's settings."""
    global rate_limit
    rate_limit = rate_limit_for(app_settings)
    logger.info(f"Rate limiting configured for {app_settings.ENVIRONMENT}: {rate_limit}")
    return rate_limit


def current_rate_limit() -> str:
    """Limit provider evaluated by slowapi on every request."""
    return rate_limit


# In-memory storage: every serverless instance limits on its own
limiter = Limiter(key_func=get_remote_address)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Shape a slowapi rejection into the response envelope.

    Args:
        request: The rejected request
        exc: Rate limit exception raised by slowapi

    Returns:
        JSONResponse: 429 RATE_LIMITED envelope
    """
    request_id = generate_request_id()
    logger.warning(
        f"Rate limit exceeded: {request.method} {request.url.path} ({exc.detail}) request_id={request_id}"
    )

    security = getattr(request.app.state, "security", None)
    cors = security.cors if security is not None else CorsOriginGuard.from_settings(settings)
    headers = cors.build_headers(request.headers.get("origin"))
    headers["X-Request-ID"] = request_id
    if security is not None:
        security.metrics.increment("rate_limited")

    return error_response(
        429,
        ErrorCode.RATE_LIMITED.value,
        client_message(ErrorCode.RATE_LIMITED.value),
        request_id=request_id,
        headers=headers,
    )


__all__ = [
    "limiter",
    "configure_rate_limit",
    "current_rate_limit",
    "rate_limit_for",
    "rate_limit_exceeded_handler",
    "RateLimitExceeded",
]
