"""
Security Event Logging

Record-event capability for authentication and CSRF events. Events are
written as structured log lines (IP anonymized, sensitive metadata
redacted) and counted in the request metrics.
"""

import enum
from typing import Any, Dict, Optional

from core.logger import get_logger
from core.metrics import MetricsRecorder
from core.sanitization import hash_identifier, redact_sensitive_fields, sanitize_ip

logger = get_logger("security_events")


class SecurityEventType(str, enum.Enum):
    TOKEN_REFRESH = "TOKEN_REFRESH"
    TOKEN_REFRESH_FAILURE = "TOKEN_REFRESH_FAILURE"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    CSRF_REJECTED = "CSRF_REJECTED"
    LOGOUT = "LOGOUT"


def log_security_event(
    event_type: SecurityEventType,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    metrics: Optional[MetricsRecorder] = None
) -> None:
    """
    Record a security event.

    Never raises: a failing sink must not fail the request.

    Args:
        event_type: Event type
        user_id: Authenticated user id, if known (hashed before logging)
        ip_address: Client IP (anonymized before logging)
        metadata: Extra context (sensitive keys redacted)
        metrics: Recorder to count the event in
    """
    try:
        logger.info(
            f"[{event_type.value}] user={hash_identifier(user_id) if user_id else 'anonymous'} "
            f"ip={sanitize_ip(ip_address)} metadata={redact_sensitive_fields(metadata)}"
        )
        if metrics is not None:
            metrics.increment(f"security_event.{event_type.value.lower()}")
    except Exception as e:
        logger.error(f"Failed to record security event {event_type.value}: {str(e)}")
