"""
Health Check Route
"""

from fastapi import APIRouter

from api.boundary import ALL_METHODS, RequestContext, with_request_boundary

router = APIRouter()


@router.api_route("/health", methods=ALL_METHODS)
@with_request_boundary("health", allowed_methods=("GET", "OPTIONS"))
async def health_check(ctx: RequestContext):
    """
    Health check endpoint to verify the service is running.

    Returns:
        dict: Status and version information
    """
    settings = ctx.settings
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }
