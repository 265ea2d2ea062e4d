"""
Session Routes

Current-session lookup and logout for the cookie session.
"""

from fastapi import APIRouter

from api.boundary import ALL_METHODS, RequestContext, with_request_boundary
from core.cookies import clear_session_cookies
from core.logger import get_logger
from core.security_events import SecurityEventType, log_security_event

router = APIRouter()
logger = get_logger(__name__)


@router.api_route("/session", methods=ALL_METHODS)
@with_request_boundary("session", allowed_methods=("GET", "OPTIONS"), require_session=True)
async def get_session(ctx: RequestContext):
    """
    Get the authenticated user of the current session.

    Tokens are never returned; they stay in HttpOnly cookies.

    **Authentication Required**: Yes (session cookie)

    **Response 200**:
    - user: id, email, role
    - expires_at: Access token expiry (epoch seconds)
    - needs_refresh: Access token expires within the refresh threshold

    **Response 401**: UNAUTHORIZED or SESSION_EXPIRED
    """
    user = ctx.user
    return {
        "user": {"id": user.id, "email": user.email, "role": user.role},
        "expires_at": ctx.session.session.expires_at if ctx.session.session else None,
        "needs_refresh": ctx.session.needs_refresh,
    }


@router.api_route("/logout", methods=ALL_METHODS)
@with_request_boundary("logout", allowed_methods=("POST", "OPTIONS"), require_session=True)
async def logout(ctx: RequestContext):
    """
    Log out by deleting all session cookies.

    **Authentication Required**: Yes (session cookie + X-CSRF-Token)
    """
    # Replaces any refreshed cookies issued earlier in this request
    ctx.set_cookies[:] = clear_session_cookies(ctx.security.sessions.cookie_options)

    log_security_event(
        SecurityEventType.LOGOUT,
        user_id=ctx.user.id,
        ip_address=ctx.client_ip,
        metrics=ctx.security.metrics,
    )
    logger.info(f"User {ctx.user.id} logged out")

    return {"logged_out": True}
