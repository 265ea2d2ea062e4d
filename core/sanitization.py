"""
Sanitization Utilities

Keeps internal error details out of client responses and personal data out
of logs.
"""

import hashlib
import html
import re
from typing import Any, Dict, Iterable, Optional

import bleach

from core.errors import EdgeError, ErrorCode

MAX_MESSAGE_LENGTH = 500

GENERIC_MESSAGE = "An error occurred. Please try again or contact support if the problem persists."

# Client-facing message per error code
CLIENT_MESSAGES: Dict[str, str] = {
    ErrorCode.BAD_REQUEST.value: "The request could not be processed.",
    ErrorCode.UNAUTHORIZED.value: "Authentication failed. Please try logging in again.",
    ErrorCode.SESSION_EXPIRED.value: "Your session has expired. Please log in again.",
    ErrorCode.FORBIDDEN.value: "You do not have permission to perform this action.",
    ErrorCode.NOT_FOUND.value: "Resource not found.",
    ErrorCode.VALIDATION_ERROR.value: "The request is invalid. Please check your input and try again.",
    ErrorCode.RATE_LIMITED.value: "Too many requests. Please wait a moment and try again.",
    ErrorCode.CSRF_INVALID.value: "Invalid CSRF token.",
    ErrorCode.CONSTRAINT_VIOLATION.value: "This resource already exists or conflicts with existing data.",
    ErrorCode.DATABASE_ERROR.value: "A database error occurred. Please try again later.",
    ErrorCode.AI_PROVIDER_ERROR.value: "The AI service is temporarily unavailable. Please try again.",
    ErrorCode.NETWORK_ERROR.value: "A network error occurred. Please try again.",
    ErrorCode.TIMEOUT.value: "Request timed out. Please try again.",
    ErrorCode.CONNECTION_RESET.value: "The connection was interrupted. Please try again.",
    ErrorCode.BAD_GATEWAY.value: "An upstream service returned an invalid response. Please try again.",
    ErrorCode.SERVICE_UNAVAILABLE.value: "The service is temporarily unavailable. Please try again.",
    ErrorCode.GATEWAY_TIMEOUT.value: "An upstream service timed out. Please try again.",
    ErrorCode.INTERNAL_ERROR.value: GENERIC_MESSAGE,
}

SENSITIVE_FIELDS = ("password", "token", "secret", "key", "email", "cookie", "authorization")

_TRACEBACK_RE = re.compile(r"Traceback \(most recent call last\):.*", re.DOTALL)
_FRAME_RE = re.compile(r'\s*File "[^"]+", line \d+.*')
_PATH_RE = re.compile(
    r"(?<![^\s\"'(=])"
    r"(?:[A-Za-z]:\\[\w.\-]+(?:\\[\w.\-]+)*|/[\w.\-]+(?:/[\w.\-]+)+)[\\/]?"
)
_DRIVER_RE = re.compile(r"\(?(?:psycopg2?|asyncpg|sqlite3|pymysql)[\w.]*\)?", re.IGNORECASE)


def client_message(code: str) -> str:
    return CLIENT_MESSAGES.get(code, GENERIC_MESSAGE)


def _strip_html(text: str) -> str:
    # Decode nested entities first so encoded tags cannot survive the final unescape
    decoded = html.unescape(text)
    while decoded != text:
        text, decoded = decoded, html.unescape(decoded)
    return html.unescape(bleach.clean(text, tags=[], attributes={}, strip=True))


def strip_internal_details(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Remove stack traces, file paths, driver names and HTML from a message.

    Args:
        text: Raw message
        max_length: Maximum length of the result

    Returns:
        str: Cleaned message (may be empty)
    """
    if not text:
        return ""

    text = _TRACEBACK_RE.sub("", text)
    text = "\n".join(line for line in text.splitlines() if not _FRAME_RE.match(line))
    text = _PATH_RE.sub("[path]", text)
    text = _DRIVER_RE.sub("", text)

    # Remove null bytes and control characters
    text = "".join(char for char in text if ord(char) >= 32 or char in "\n\t")
    text = _strip_html(text)
    text = text.strip()

    if len(text) > max_length:
        text = text[:max_length]

    return text


def sanitize_error_message(error: Any, code: str, expose_details: bool = False) -> str:
    """
    Build the client-facing message for a failure.

    Messages of EdgeError subclasses marked `expose` are written for the
    client and pass through after cleaning. Anything else gets the generic
    message for its code, unless raw details are explicitly exposed
    (never in production).

    Args:
        error: The exception
        code: Classified error code
        expose_details: Return the cleaned raw message (development only)

    Returns:
        str: User-safe message
    """
    if isinstance(error, EdgeError) and error.expose:
        cleaned = strip_internal_details(error.message)
        if cleaned:
            return cleaned

    if expose_details:
        cleaned = strip_internal_details(str(error))
        if cleaned:
            return cleaned

    return client_message(code)


def hash_identifier(value: Optional[str]) -> str:
    """
    Hash a value into a stable anonymized identifier for logs.

    Returns:
        str: "uid_" + first 12 hex characters of the SHA-256 digest
    """
    if not value:
        return "unknown"
    digest = hashlib.sha256(value.lower().strip().encode("utf-8")).hexdigest()
    return f"uid_{digest[:12]}"


def sanitize_ip(ip: Optional[str]) -> str:
    """
    Anonymize an IP address for logging.

    192.168.1.100 -> 192.168.1.x, 2001:db8:85a3::7334 -> 2001:db8:85a3::x
    """
    if not ip or ip == "unknown":
        return "no-ip"

    ipv4 = re.match(r"^(\d+\.\d+\.\d+)\.\d+$", ip)
    if ipv4:
        return f"{ipv4.group(1)}.x"

    if ":" in ip:
        return f"{':'.join(ip.split(':')[:3])}::x"

    return "unknown-ip"


def redact_sensitive_fields(
    data: Optional[Dict[str, Any]],
    sensitive_fields: Iterable[str] = SENSITIVE_FIELDS
) -> Dict[str, Any]:
    """
    Replace values of sensitive keys with "[REDACTED]".

    A key is sensitive when it contains any of the given field names.
    """
    if not data:
        return {}

    fields = tuple(field.lower() for field in sensitive_fields)
    return {
        key: "[REDACTED]" if any(field in str(key).lower() for field in fields) else value
        for key, value in data.items()
    }
