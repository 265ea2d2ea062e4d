"""
Request Boundary

Wraps every endpoint handler in one fixed pipeline:

    CORS -> preflight -> method check -> CSRF -> session -> handler

Every response leaving the boundary, success or failure, carries the CORS
headers, an X-Request-ID header and the uniform JSON envelope, and any
Set-Cookie lines collected along the way. Nothing raised inside the
pipeline escapes as a bare framework error.
"""

import inspect
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from starlette.requests import Request
from starlette.responses import Response

from api.dependencies import SecurityContext, get_security_context
from core.config import Settings
from core.cookies import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, SESSION_ID_COOKIE, parse_cookies
from core.csrf import requires_csrf, validate_csrf_request
from core.errors import EdgeError, ErrorCode, classify_error
from core.logger import bind_request_id, get_logger, reset_request_id
from core.responses import error_response, generate_request_id, success_response
from core.sanitization import client_message, sanitize_error_message
from core.security_events import SecurityEventType, log_security_event
from models.session import SessionUser
from services.session_manager import SessionResult, SessionState

logger = get_logger(__name__)

ErrorHook = Callable[[Exception, Any], Any]

MAX_LOGGED_FRAMES = 5

# Routes register every method so the boundary answers 405 itself
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@dataclass(frozen=True)
class BoundaryOptions:
    """Per-endpoint boundary configuration."""
    function_name: str
    allowed_methods: Sequence[str] = ("POST", "OPTIONS")
    require_csrf: bool = True
    require_session: bool = False
    cors: bool = True
    on_error: Optional[ErrorHook] = None


@dataclass
class RequestContext:
    """Everything a handler needs about the current request."""
    request: Request
    request_id: str
    security: SecurityContext
    cors_headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    session: Optional[SessionResult] = None
    set_cookies: List[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def user(self) -> Optional[SessionUser]:
        return self.session.user if self.session else None

    @property
    def settings(self) -> Settings:
        return self.security.settings

    @property
    def client_ip(self) -> Optional[str]:
        forwarded = self.request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return self.request.client.host if self.request.client else None


Handler = Callable[[RequestContext], Awaitable[Any]]


class RequestBoundary:
    """Runs one endpoint handler inside the request pipeline."""

    def __init__(self, handler: Handler, options: BoundaryOptions):
        self.handler = handler
        self.options = options
        self.allowed_methods = tuple(method.upper() for method in options.allowed_methods)

    async def handle(self, request: Request) -> Response:
        security = get_security_context(request)
        ctx = RequestContext(
            request=request,
            request_id=generate_request_id(),
            security=security,
        )

        token = bind_request_id(ctx.request_id)
        try:
            response = await self._respond(ctx)
            return self._finalize(ctx, response)
        finally:
            reset_request_id(token)

    async def _respond(self, ctx: RequestContext) -> Response:
        request = ctx.request
        try:
            if self.options.cors:
                ctx.cors_headers = ctx.security.cors.build_headers(request.headers.get("origin"))
            ctx.cookies = parse_cookies(request.headers.get("cookie"))
            return await self._run(ctx)
        except Exception as e:
            return self._error(ctx, e)

    async def _run(self, ctx: RequestContext) -> Response:
        request = ctx.request
        method = request.method.upper()
        fn = self.options.function_name

        if method == "OPTIONS":
            return Response(status_code=204)

        if method not in self.allowed_methods:
            logger.warning(f"[{fn}] Method {method} not allowed")
            return error_response(
                405,
                ErrorCode.BAD_REQUEST.value,
                f"Method {method} not allowed",
                request_id=ctx.request_id,
                headers={"Allow": ", ".join(self.allowed_methods)},
            )

        if self.options.require_csrf and requires_csrf(method):
            if not validate_csrf_request(request):
                ctx.security.metrics.increment("csrf.rejected")
                log_security_event(
                    SecurityEventType.CSRF_REJECTED,
                    ip_address=ctx.client_ip,
                    metadata={"endpoint": fn, "method": method},
                    metrics=ctx.security.metrics,
                )
                return error_response(
                    403,
                    ErrorCode.CSRF_INVALID.value,
                    client_message(ErrorCode.CSRF_INVALID.value),
                    request_id=ctx.request_id,
                )

        if self.options.require_session:
            ctx.session = await self._authenticate(ctx)
            if not ctx.session.authenticated:
                return error_response(
                    401,
                    ctx.session.reason,
                    client_message(ctx.session.reason),
                    request_id=ctx.request_id,
                )

        result = self.handler(ctx)
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, Response):
            return result
        return success_response(result, request_id=ctx.request_id)

    async def _authenticate(self, ctx: RequestContext) -> SessionResult:
        """Validate the session on the path chosen by the rollout flags."""
        security = ctx.security
        fn = self.options.function_name
        decision = security.flags.decide(fn, ctx.cookies.get(SESSION_ID_COOKIE))

        if decision.use_new_middleware:
            result = await security.sessions.validate(ctx.cookies)
        else:
            token = _bearer_token(ctx.request) or ctx.cookies.get(ACCESS_TOKEN_COOKIE)
            result = await security.sessions.validate_bearer(token)

        security.metrics.increment(f"session.{result.state.value.lower()}")

        if result.state == SessionState.REFRESHED:
            ctx.set_cookies.extend(result.cookies)
            log_security_event(
                SecurityEventType.TOKEN_REFRESH,
                user_id=result.user.id if result.user else None,
                ip_address=ctx.client_ip,
                metadata={"endpoint": fn},
                metrics=security.metrics,
            )
        elif result.state == SessionState.INVALID:
            if decision.use_new_middleware and ctx.cookies.get(REFRESH_TOKEN_COOKIE):
                log_security_event(
                    SecurityEventType.TOKEN_REFRESH_FAILURE,
                    ip_address=ctx.client_ip,
                    metadata={"endpoint": fn},
                    metrics=security.metrics,
                )
            if result.reason == ErrorCode.SESSION_EXPIRED.value:
                log_security_event(
                    SecurityEventType.SESSION_EXPIRED,
                    ip_address=ctx.client_ip,
                    metadata={"endpoint": fn},
                    metrics=security.metrics,
                )

        return result

    def _error(self, ctx: RequestContext, error: Exception) -> Response:
        fn = self.options.function_name
        # 4xx EdgeErrors are expected outcomes
        expected = isinstance(error, EdgeError) and error.status_code < 500
        if expected:
            logger.warning(
                f"[{fn}] {type(error).__name__}: {str(error)} "
                f"(code={error.code}, status={error.status_code})"
            )
        else:
            frames = "".join(traceback.format_tb(error.__traceback__, limit=MAX_LOGGED_FRAMES))
            logger.error(
                f"[{fn}] Unhandled {type(error).__name__}: {str(error)} "
                f"(code={getattr(error, 'code', None)}, status={getattr(error, 'status_code', None)})\n{frames}"
            )

        hook = self.options.on_error or ctx.security.on_error
        if hook is not None and not expected:
            try:
                hook(error, ctx.request)
            except Exception as hook_error:
                logger.error(f"[{fn}] Error hook failed: {str(hook_error)}")

        classification = classify_error(error)
        message = sanitize_error_message(
            error, classification.code, ctx.settings.expose_error_details
        )
        ctx.security.metrics.increment(f"errors.{classification.code.lower()}")
        return error_response(
            classification.status_code,
            classification.code,
            message,
            request_id=ctx.request_id,
        )

    def _finalize(self, ctx: RequestContext, response: Response) -> Response:
        for name, value in ctx.cors_headers.items():
            if name not in response.headers:
                response.headers[name] = value
        response.headers["X-Request-ID"] = ctx.request_id

        for cookie in ctx.set_cookies:
            response.headers.append("set-cookie", cookie)

        duration_ms = (time.perf_counter() - ctx.started_at) * 1000
        logger.info(
            f"[{self.options.function_name}] {ctx.request.method} {response.status_code} "
            f"in {duration_ms:.1f}ms"
        )
        metrics = ctx.security.metrics
        metrics.increment("requests")
        metrics.increment(f"responses.{response.status_code}")
        return response


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def with_request_boundary(
    function_name: str,
    allowed_methods: Sequence[str] = ("POST", "OPTIONS"),
    require_csrf: bool = True,
    require_session: bool = False,
    cors: bool = True,
    on_error: Optional[ErrorHook] = None
) -> Callable[[Handler], Callable[[Request], Awaitable[Response]]]:
    """
    Turn an `async def handler(ctx)` into a FastAPI endpoint.

    Usage:
        @router.api_route("/logout", methods=ALL_METHODS)
        @with_request_boundary("logout", require_session=True)
        async def logout(ctx: RequestContext):
            ...

    The handler returns either data for the success envelope or a
    Starlette Response, which is passed through unchanged.
    """
    options = BoundaryOptions(
        function_name=function_name,
        allowed_methods=tuple(allowed_methods),
        require_csrf=require_csrf,
        require_session=require_session,
        cors=cors,
        on_error=on_error,
    )

    def decorator(handler: Handler) -> Callable[[Request], Awaitable[Response]]:
        boundary = RequestBoundary(handler, options)

        async def endpoint(request: Request) -> Response:
            return await boundary.handle(request)

        endpoint.__name__ = handler.__name__
        endpoint.__doc__ = handler.__doc__
        endpoint.__module__ = handler.__module__
        endpoint.boundary = boundary
        return endpoint

    return decorator
