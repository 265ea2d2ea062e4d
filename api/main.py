"""
StageFlow Edge - Main Application

FastAPI application entry point for the StageFlow security edge.
Every endpoint runs inside the request boundary (CORS, CSRF, cookie
session, error envelope); see api/boundary.py.
"""

from typing import Mapping, Optional

from fastapi import FastAPI, Request
from slowapi.errors import RateLimitExceeded

from api.dependencies import build_security_context
from api.middleware.rate_limit import configure_rate_limit, limiter, rate_limit_exceeded_handler
from api.routes import csrf, debug, health, session
from core.config import Settings, get_settings
from core.debug_mode import log_debug_mode_status
from core.logger import get_logger, setup_logging
from core.metrics import MetricsRecorder
from core.monitoring import init_sentry
from services.session_backend import SessionBackend

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[SessionBackend] = None,
    environ: Optional[Mapping[str, str]] = None,
    metrics: Optional[MetricsRecorder] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings (default: get_settings())
        backend: Session backend (default: Supabase from settings)
        environ: Environment scanned for AUTH_ENABLE_* overrides
        metrics: Metrics recorder

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()

    # SECURITY: Fail fast if DEBUG is enabled in production
    if settings.is_production and settings.DEBUG:
        logger.critical("SECURITY ERROR: DEBUG=True in production environment!")
        raise RuntimeError("DEBUG must be False in production. Check your environment variables.")

    init_sentry(settings)

    # SECURITY: Disable API docs in production
    app = FastAPI(
        title=settings.APP_NAME,
        description="Security edge for the StageFlow CRM: CORS, CSRF, cookie sessions and error envelopes",
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None
    )

    app.state.security = build_security_context(settings, backend=backend, environ=environ, metrics=metrics)
    configure_rate_limit(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Security Headers Middleware
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """
        Add security headers to all HTTP responses.

        Headers added:
        - Strict-Transport-Security: Enforce HTTPS (production only)
        - X-Content-Type-Options: Prevent MIME type sniffing
        - X-Frame-Options: Prevent clickjacking
        - Referrer-Policy: Control referrer information
        """
        response = await call_next(request)

        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response

    app.include_router(health.router, tags=["Health"])
    app.include_router(csrf.router, prefix="/api", tags=["CSRF"])
    app.include_router(session.router, prefix="/api", tags=["Session"])
    app.include_router(debug.router, prefix="/api/debug", tags=["Debug"])

    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    for problem in app.state.security.flags.validate():
        logger.warning(f"Auth feature flag configuration: {problem}")
    log_debug_mode_status(settings)

    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().DEBUG
    )
