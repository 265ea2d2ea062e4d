"""
Error Monitoring (Sentry)

Sentry is optional: it is initialized only when SENTRY_ENABLED and
SENTRY_DSN are set, and capture failures never affect the response.
"""

from typing import Any

import sentry_sdk

from core.config import Settings
from core.logger import get_logger

logger = get_logger(__name__)


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry error tracking if enabled.

    Returns:
        bool: True if Sentry was initialized
    """
    if not (settings.SENTRY_ENABLED and settings.SENTRY_DSN):
        return False

    try:
        from sentry_sdk.integrations.fastapi import FastApiIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[FastApiIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions
            environment=settings.ENVIRONMENT,
            release=settings.APP_VERSION,
            send_default_pii=False,
        )
        logger.info("Sentry error tracking initialized")
        return True
    except Exception as e:
        logger.warning(f"Failed to initialize Sentry: {str(e)}")
        return False


def capture_exception(error: Exception, request: Any = None) -> None:
    """Error hook for the request boundary: report the exception to Sentry."""
    with sentry_sdk.new_scope() as scope:
        if request is not None:
            scope.set_tag("http.method", getattr(request, "method", "unknown"))
            scope.set_tag("http.path", getattr(getattr(request, "url", None), "path", "unknown"))
        sentry_sdk.capture_exception(error)
