"""
API Dependencies

Shared collaborators for the request boundary. They are built once at
startup, stored on `app.state.security` and read by every request.
"""

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from starlette.requests import Request

from core.config import Settings
from core.cors import CorsOriginGuard
from core.feature_flags import FeatureFlagConfig
from core.metrics import MetricsRecorder
from core.monitoring import capture_exception
from services.session_backend import SessionBackend, SupabaseSessionBackend
from services.session_manager import SessionManager


@dataclass
class SecurityContext:
    """Read-only collaborators shared by all requests."""
    settings: Settings
    cors: CorsOriginGuard
    sessions: SessionManager
    flags: FeatureFlagConfig
    metrics: MetricsRecorder
    on_error: Optional[Callable[[Exception, Any], Any]] = None


def build_security_context(
    settings: Settings,
    backend: Optional[SessionBackend] = None,
    environ: Optional[Mapping[str, str]] = None,
    metrics: Optional[MetricsRecorder] = None
) -> SecurityContext:
    """
    Build the shared collaborators from settings.

    Args:
        settings: Application settings
        backend: Session backend (default: Supabase from settings)
        environ: Environment scanned for AUTH_ENABLE_* overrides
        metrics: Metrics recorder (default: from METRICS_REDIS_URL)

    Returns:
        SecurityContext
    """
    backend = backend or SupabaseSessionBackend.from_settings(settings)
    return SecurityContext(
        settings=settings,
        cors=CorsOriginGuard.from_settings(settings),
        sessions=SessionManager.from_settings(backend, settings),
        flags=FeatureFlagConfig.from_settings(settings, environ),
        metrics=metrics or MetricsRecorder(settings.METRICS_REDIS_URL or None),
        on_error=capture_exception if settings.SENTRY_ENABLED and settings.SENTRY_DSN else None,
    )


def get_security_context(request: Request) -> SecurityContext:
    return request.app.state.security
