"""
CSRF Protection Utilities

Double-submit cookie pattern: the token stored in the `_csrf` cookie must be
sent back in the X-CSRF-Token header. Only same-origin script can read the
cookie and set the header, so a mismatch means a forged cross-site request.
"""

import hmac
import secrets
from typing import Optional

from starlette.requests import Request

from core.cookies import CSRF_COOKIE, parse_cookies, serialize_cookie
from core.logger import get_logger
from models.security import CookieOptions

logger = get_logger(__name__)

CSRF_HEADER = "X-CSRF-Token"

# State-changing methods that require CSRF protection
PROTECTED_METHODS = {"POST", "PUT", "DELETE", "PATCH"}


def generate_csrf_token() -> str:
    """
    Generate a secure CSRF token.

    Returns:
        str: URL-safe random token (32 bytes = 43 characters)
    """
    return secrets.token_urlsafe(32)


def build_csrf_cookie(token: str, max_age: int = 3600, secure: bool = True,
                      domain: Optional[str] = None) -> str:
    """
    Build the Set-Cookie header carrying the CSRF token.

    The cookie is not HttpOnly so the frontend can copy it into the header.
    """
    return serialize_cookie(CSRF_COOKIE, token, CookieOptions(
        http_only=False,
        secure=secure,
        same_site="Strict",
        max_age=max_age,
        path="/",
        domain=domain or None,
    ))


def validate_csrf_token(header_token: Optional[str], cookie_header: Optional[str]) -> bool:
    """
    Validate a CSRF token pair with a constant-time comparison.

    Never raises: any failure while reading or comparing counts as a rejection.

    Args:
        header_token: Value of the X-CSRF-Token header
        cookie_header: Raw Cookie header

    Returns:
        bool: True if both tokens are present and equal
    """
    try:
        if not header_token:
            logger.warning("CSRF validation failed: no token in header")
            return False

        cookie_token = parse_cookies(cookie_header).get(CSRF_COOKIE)
        if not cookie_token:
            logger.warning("CSRF validation failed: no token in cookie")
            return False

        header_bytes = header_token.encode("utf-8")
        cookie_bytes = cookie_token.encode("utf-8")

        if len(header_bytes) != len(cookie_bytes):
            logger.warning("CSRF validation failed: token length mismatch")
            return False

        if not hmac.compare_digest(header_bytes, cookie_bytes):
            logger.warning("CSRF validation failed: token mismatch")
            return False

        return True
    except Exception as e:
        logger.error(f"CSRF validation error: {str(e)}")
        return False


def requires_csrf(method: str) -> bool:
    return method.upper() in PROTECTED_METHODS


def validate_csrf_request(request: Request) -> bool:
    """
    Validate the CSRF token pair carried by a request.

    Args:
        request: Starlette request

    Returns:
        bool: True if valid, False otherwise
    """
    return validate_csrf_token(
        request.headers.get(CSRF_HEADER),
        request.headers.get("cookie")
    )
