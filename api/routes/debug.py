"""
Debug Routes

Diagnostics for the auth rollout. Hidden (404) unless
ENABLE_DEBUG_ENDPOINTS=true.
"""

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from api.boundary import ALL_METHODS, RequestContext, with_request_boundary
from core.debug_mode import require_debug_mode

router = APIRouter()


@router.api_route("/feature-flags", methods=ALL_METHODS)
@with_request_boundary("debug-feature-flags", allowed_methods=("GET", "OPTIONS"))
async def feature_flags(ctx: RequestContext):
    """Current auth rollout flags and configuration problems."""
    require_debug_mode(ctx.settings)
    flags = ctx.security.flags
    return {
        "status": flags.status(),
        "problems": flags.validate(),
    }


@router.api_route("/metrics", methods=ALL_METHODS)
@with_request_boundary("debug-metrics", allowed_methods=("GET", "OPTIONS"))
async def metrics(ctx: RequestContext):
    require_debug_mode(ctx.settings)
    recorder = ctx.security.metrics
    return {
        "backend": "redis" if recorder.uses_redis else "memory",
        "counters": await run_in_threadpool(recorder.snapshot),
    }
