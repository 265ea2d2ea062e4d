"""
CSRF Token Route

Issues the double-submit token. The frontend reads the `_csrf` cookie (or
the token in the body) and sends it back in the X-CSRF-Token header on
every state-changing request.
"""

from fastapi import APIRouter

from api.boundary import ALL_METHODS, RequestContext, with_request_boundary
from api.middleware.rate_limit import current_rate_limit, limiter
from core.csrf import build_csrf_cookie, generate_csrf_token
from core.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.api_route("/csrf-token", methods=ALL_METHODS)
@limiter.limit(current_rate_limit, methods=["get"])
@with_request_boundary("csrf-token", allowed_methods=("GET", "OPTIONS"))
async def get_csrf_token(ctx: RequestContext):
    """
    Get a CSRF token.

    Returns a new token and sets it in the `_csrf` cookie (readable by
    script, SameSite=Strict).

    **Response 200**:
    - csrf_token: CSRF token value
    - expires_in: Token lifetime in seconds

    **Response 429**: Rate limited
    """
    settings = ctx.settings
    csrf_token = generate_csrf_token()

    ctx.set_cookies.append(build_csrf_cookie(
        csrf_token,
        max_age=settings.CSRF_TOKEN_MAX_AGE,
        secure=settings.COOKIE_SECURE,
        domain=settings.COOKIE_DOMAIN or None,
    ))

    return {
        "csrf_token": csrf_token,
        "expires_in": settings.CSRF_TOKEN_MAX_AGE,
    }
