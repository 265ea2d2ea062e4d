"""
Cookie Codec

Parses Cookie request headers and builds Set-Cookie header lines for the
cookie-based session (HttpOnly, Secure, SameSite=Strict by default).
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

from models.security import CookieOptions

# Cookie names
ACCESS_TOKEN_COOKIE = "sb-access-token"
REFRESH_TOKEN_COOKIE = "sb-refresh-token"
SESSION_ID_COOKIE = "sb-session-id"
CSRF_COOKIE = "_csrf"

DEFAULT_COOKIE_OPTIONS = CookieOptions()


def parse_cookies(cookie_header: Optional[str]) -> Dict[str, str]:
    """
    Parse cookies from a Cookie header string.

    Segments without "=" are skipped; a repeated name keeps its last value.

    Args:
        cookie_header: Cookie header string (e.g., "name1=value1; name2=value2")

    Returns:
        dict: Cookie name-value pairs
    """
    cookies: Dict[str, str] = {}

    if not cookie_header:
        return cookies

    for segment in cookie_header.split(";"):
        name, sep, value = segment.partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        cookies[name] = unquote(value.strip())

    return cookies


def _format_expires(max_age: int) -> str:
    expires = datetime.now(timezone.utc) + timedelta(seconds=max_age)
    return format_datetime(expires, usegmt=True)


def serialize_cookie(
    name: str,
    value: str,
    options: Optional[CookieOptions] = None
) -> str:
    """
    Serialize a cookie into a Set-Cookie header value.

    Attributes are emitted in a fixed order: HttpOnly, Secure, SameSite,
    Max-Age + Expires, Path, Domain.

    Args:
        name: Cookie name
        value: Cookie value (percent-encoded on output)
        options: Cookie attributes (defaults to DEFAULT_COOKIE_OPTIONS)

    Returns:
        str: Set-Cookie header value
    """
    opts = options or DEFAULT_COOKIE_OPTIONS
    parts: List[str] = [f"{name}={quote(value, safe='')}"]

    if opts.http_only:
        parts.append("HttpOnly")

    if opts.secure:
        parts.append("Secure")

    if opts.same_site:
        parts.append(f"SameSite={opts.same_site}")

    if opts.max_age is not None:
        parts.append(f"Max-Age={opts.max_age}")
        # Expires for older browsers that ignore Max-Age
        parts.append(f"Expires={_format_expires(opts.max_age)}")

    if opts.path:
        parts.append(f"Path={opts.path}")

    if opts.domain:
        parts.append(f"Domain={opts.domain}")

    return "; ".join(parts)


def delete_cookie(name: str, options: Optional[CookieOptions] = None) -> str:
    """
    Build a Set-Cookie header that deletes a cookie.

    Args:
        name: Cookie name
        options: Base attributes (secure defaults when omitted)

    Returns:
        str: Set-Cookie header value with Max-Age=0
    """
    base = options or DEFAULT_COOKIE_OPTIONS
    return serialize_cookie(name, "", base.model_copy(update={"max_age": 0}))


def set_session_cookies(
    access_token: str,
    refresh_token: str,
    access_max_age: int = 3600,
    refresh_max_age: int = 7 * 24 * 3600,
    options: Optional[CookieOptions] = None
) -> List[str]:
    """
    Build the Set-Cookie headers for a (re)issued session.

    Args:
        access_token: Access token
        refresh_token: Refresh token
        access_max_age: Access token cookie lifetime (seconds)
        refresh_max_age: Refresh token cookie lifetime (seconds)
        options: Base attributes

    Returns:
        list: [access cookie, refresh cookie]
    """
    base = options or DEFAULT_COOKIE_OPTIONS
    return [
        serialize_cookie(ACCESS_TOKEN_COOKIE, access_token, base.model_copy(update={"max_age": access_max_age})),
        serialize_cookie(REFRESH_TOKEN_COOKIE, refresh_token, base.model_copy(update={"max_age": refresh_max_age})),
    ]


def clear_session_cookies(options: Optional[CookieOptions] = None) -> List[str]:
    """Build Set-Cookie headers that delete every session cookie."""
    return [
        delete_cookie(ACCESS_TOKEN_COOKIE, options),
        delete_cookie(REFRESH_TOKEN_COOKIE, options),
        delete_cookie(SESSION_ID_COOKIE, options),
    ]
