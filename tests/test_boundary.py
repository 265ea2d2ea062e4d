"""
Request Boundary Tests

End-to-end tests through the FastAPI application.
"""

import logging

from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from api.boundary import ALL_METHODS, RequestContext, with_request_boundary
from api.main import create_app
from api.middleware.rate_limit import configure_rate_limit, current_rate_limit, limiter, rate_limit_for
from core.errors import DebugModeDisabledError, ServiceUnavailableError, ValidationError
from core.metrics import MetricsRecorder

from conftest import ORIGIN, PREVIEW_ORIGIN, FakeSessionBackend, build_settings, cookie_header, make_token


def session_cookies(access: str = "access", refresh: str = None, csrf: str = None) -> str:
    cookies = {"sb-access-token": access}
    if refresh:
        cookies["sb-refresh-token"] = refresh
    if csrf:
        cookies["_csrf"] = csrf
    return cookie_header(cookies)


def add_route(app, path: str, handler, **options):
    options.setdefault("allowed_methods", ("GET", "POST", "OPTIONS"))
    endpoint = with_request_boundary(path.strip("/"), **options)(handler)
    app.add_api_route(path, endpoint, methods=ALL_METHODS)


def test_preflight_returns_204_with_cors_headers(client: TestClient):
    """Test OPTIONS short-circuits with CORS headers and no body."""
    response = client.options("/api/logout", headers={"Origin": ORIGIN})

    assert response.status_code == 204
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == ORIGIN
    assert response.headers["access-control-allow-credentials"] == "true"
    assert "x-request-id" in response.headers


def test_preflight_skips_handler(app, client: TestClient):
    """Test the handler never runs for a preflight."""
    calls = []

    async def handler(ctx: RequestContext):
        calls.append(ctx.request_id)
        return {}

    add_route(app, "/counted", handler)
    client.options("/counted", headers={"Origin": ORIGIN})
    assert calls == []


def test_method_not_allowed(client: TestClient):
    """Test a disallowed method gets 405 with an Allow header."""
    response = client.get("/api/logout", headers={"Origin": ORIGIN})

    assert response.status_code == 405
    assert response.headers["allow"] == "POST, OPTIONS"
    assert response.headers["access-control-allow-origin"] == ORIGIN
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "BAD_REQUEST"


def test_csrf_rejection(client: TestClient, backend: FakeSessionBackend, metrics: MetricsRecorder):
    """Test a POST without a matching CSRF pair never reaches the session stage."""
    backend.add_valid("access")

    response = client.post(
        "/api/logout",
        headers={"Origin": ORIGIN, "Cookie": session_cookies(csrf="cookie-token"), "X-CSRF-Token": "other-token"},
    )

    assert response.status_code == 403
    assert response.json()["code"] == "CSRF_INVALID"
    assert response.json()["retryable"] is False
    assert backend.validate_calls == []
    assert metrics.get("csrf.rejected") == 1
    assert metrics.get("security_event.csrf_rejected") == 1


def test_unauthenticated(client: TestClient, csrf_token: str):
    """Test a missing session answers 401 UNAUTHORIZED."""
    response = client.post(
        "/api/logout",
        headers={"Cookie": f"_csrf={csrf_token}", "X-CSRF-Token": csrf_token},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


def test_expired_session(client: TestClient):
    """Test an expired access token without refresh token answers SESSION_EXPIRED."""
    response = client.get("/api/session", headers={"Cookie": session_cookies(access=make_token(expires_in=-30))})

    assert response.status_code == 401
    assert response.json()["code"] == "SESSION_EXPIRED"


def test_valid_session(client: TestClient, backend: FakeSessionBackend, metrics: MetricsRecorder):
    """Test an authenticated request gets the success envelope."""
    backend.add_valid("access", user_id="user-7")

    response = client.get("/api/session", headers={"Origin": ORIGIN, "Cookie": session_cookies()})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["code"] == "SUCCESS"
    assert body["data"]["user"]["id"] == "user-7"
    assert body["data"]["needs_refresh"] is False
    assert response.headers["x-request-id"] == body["requestId"]
    assert response.headers.get_list("set-cookie") == []
    assert metrics.get("requests") == 1
    assert metrics.get("responses.200") == 1
    assert metrics.get("session.valid") == 1


def test_refreshed_session_sets_cookies(client: TestClient, backend: FakeSessionBackend):
    """Test transparent refresh attaches the new session cookies."""
    backend.add_refreshable("refresh", access_token="new-access", new_refresh_token="new-refresh")

    response = client.get("/api/session", headers={"Cookie": session_cookies(access="stale", refresh="refresh")})

    assert response.status_code == 200
    assert response.json()["data"]["needs_refresh"] is True
    cookies = response.headers.get_list("set-cookie")
    assert len(cookies) == 2
    assert cookies[0].startswith("sb-access-token=new-access;")
    assert cookies[1].startswith("sb-refresh-token=new-refresh;")


def test_refreshed_cookies_survive_handler_error(app, client: TestClient, backend: FakeSessionBackend):
    """Test cookies from a refresh are still set when the handler fails."""
    backend.add_refreshable("refresh")

    async def handler(ctx: RequestContext):
        raise ServiceUnavailableError()

    add_route(app, "/flaky", handler, require_session=True)
    response = client.get("/flaky", headers={"Cookie": session_cookies(access="stale", refresh="refresh")})

    assert response.status_code == 503
    assert len(response.headers.get_list("set-cookie")) == 2


def test_backend_outage_fails_closed(client: TestClient, backend: FakeSessionBackend):
    """Test an unreachable session backend makes the request unauthenticated."""
    backend.error = ConnectionError("backend down")

    response = client.get("/api/session", headers={"Cookie": session_cookies()})

    assert response.status_code == 401


def test_logout_clears_cookies(client: TestClient, backend: FakeSessionBackend, metrics: MetricsRecorder):
    """Test logout deletes every session cookie."""
    backend.add_valid("access")
    token = client.get("/api/csrf-token").json()["data"]["csrf_token"]

    response = client.post(
        "/api/logout",
        headers={"Cookie": session_cookies(csrf=token), "X-CSRF-Token": token},
    )

    assert response.status_code == 200
    cookies = response.headers.get_list("set-cookie")
    assert [cookie.split("=", 1)[0] for cookie in cookies] == ["sb-access-token", "sb-refresh-token", "sb-session-id"]
    assert all("Max-Age=0" in cookie for cookie in cookies)
    assert metrics.get("security_event.logout") == 1


def test_csrf_token_endpoint(client: TestClient):
    """Test the CSRF endpoint returns the token and sets the matching cookie."""
    response = client.get("/api/csrf-token", headers={"Origin": ORIGIN})

    assert response.status_code == 200
    token = response.json()["data"]["csrf_token"]
    cookies = response.headers.get_list("set-cookie")
    assert len(cookies) == 1
    assert cookies[0].startswith(f"_csrf={token};")
    assert "HttpOnly" not in cookies[0]


def test_csrf_token_endpoint_is_rate_limited(backend: FakeSessionBackend):
    """Test the CSRF endpoint answers 429 with the envelope once the app's limit is hit."""
    app = create_app(
        settings=build_settings(RATE_LIMIT_PER_MINUTE=3),
        backend=backend,
        environ={},
        metrics=MetricsRecorder(),
    )
    client = TestClient(app, raise_server_exceptions=False)

    limiter.reset()
    for _ in range(3):
        assert client.get("/api/csrf-token").status_code == 200

    response = client.get("/api/csrf-token", headers={"Origin": ORIGIN})
    assert response.status_code == 429
    body = response.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["retryable"] is True
    assert response.headers["access-control-allow-origin"] == ORIGIN


def test_rate_limit_follows_application_settings():
    """Test the limit comes from the settings the app was built with."""
    assert rate_limit_for(build_settings(RATE_LIMIT_PER_MINUTE=7)) == "7/minute"
    assert rate_limit_for(build_settings(ENVIRONMENT="development")) == "10000/minute"
    assert rate_limit_for(build_settings(DEBUG=True)) == "10000/minute"

    configure_rate_limit(build_settings(RATE_LIMIT_PER_MINUTE=5))
    assert current_rate_limit() == "5/minute"


def test_preview_origin_echoed(client: TestClient):
    """Test deploy previews get their own origin back."""
    response = client.get("/health", headers={"Origin": PREVIEW_ORIGIN})
    assert response.headers["access-control-allow-origin"] == PREVIEW_ORIGIN


def test_disallowed_origin_gets_canonical(client: TestClient):
    """Test unknown origins are answered with the canonical origin."""
    response = client.get("/health", headers={"Origin": "https://evil.example.com"})
    assert response.headers["access-control-allow-origin"] == ORIGIN


def test_health(client: TestClient):
    """Test the health endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "healthy"
    assert response.headers["x-content-type-options"] == "nosniff"


def test_error_is_classified_and_sanitized(app, client: TestClient, metrics: MetricsRecorder):
    """Test an unexpected error becomes a generic 500 envelope."""
    async def handler(ctx: RequestContext):
        raise RuntimeError("boom at /srv/app/services/deals.py")

    add_route(app, "/broken", handler)
    response = client.get("/broken", headers={"Origin": ORIGIN})

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "INTERNAL_ERROR"
    assert body["retryable"] is False
    assert "/srv/app" not in body["message"]
    assert "boom" not in body["message"]
    assert response.headers["access-control-allow-origin"] == ORIGIN
    assert metrics.get("errors.internal_error") == 1


def test_upstream_error_is_retryable(app, client: TestClient):
    """Test an upstream outage is marked retryable."""
    async def handler(ctx: RequestContext):
        raise ServiceUnavailableError()

    add_route(app, "/upstream", handler)
    response = client.get("/upstream")

    assert response.status_code == 503
    assert response.json()["code"] == "SERVICE_UNAVAILABLE"
    assert response.json()["retryable"] is True


def test_exposed_error_message(app, client: TestClient):
    """Test client-safe error messages reach the client."""
    async def handler(ctx: RequestContext):
        raise ValidationError("Deal value must be positive")

    add_route(app, "/validate", handler)
    response = client.get("/validate")

    assert response.status_code == 400
    assert response.json()["message"] == "Deal value must be positive"


def test_error_hook_called_and_failures_contained(app, client: TestClient):
    """Test the error hook sees the exception and its own failure is ignored."""
    seen = []

    def hook(error, request):
        seen.append(type(error).__name__)
        raise RuntimeError("hook failed")

    async def handler(ctx: RequestContext):
        raise KeyError("missing")

    add_route(app, "/hooked", handler, on_error=hook)
    response = client.get("/hooked")

    assert seen == ["KeyError"]
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_expected_client_errors_skip_the_error_hook(app, client: TestClient, caplog):
    """Test 4xx errors raised on purpose are logged as warnings and not reported."""
    seen = []

    def hook(error, request):
        seen.append(type(error).__name__)

    async def invalid(ctx: RequestContext):
        raise ValidationError("Deal value must be positive")

    async def hidden(ctx: RequestContext):
        raise DebugModeDisabledError()

    async def broken(ctx: RequestContext):
        raise KeyError("missing")

    add_route(app, "/invalid", invalid, on_error=hook)
    add_route(app, "/hidden", hidden, on_error=hook)
    add_route(app, "/broken", broken, on_error=hook)

    with caplog.at_level(logging.INFO, logger="api.boundary"):
        assert client.get("/invalid").status_code == 400
        assert client.get("/hidden").status_code == 404
        assert client.get("/broken").status_code == 400

    assert seen == ["KeyError"]
    errors = [record for record in caplog.records if record.levelno >= logging.ERROR]
    assert len(errors) == 1
    assert "KeyError" in errors[0].getMessage()
    warnings = [record.getMessage() for record in caplog.records if record.levelno == logging.WARNING]
    assert any("DebugModeDisabledError" in message for message in warnings)


def test_log_records_carry_the_request_id(client: TestClient, backend: FakeSessionBackend, caplog):
    """Test log lines from every layer of a request share its X-Request-ID."""
    backend.error = ConnectionError("backend down")

    with caplog.at_level(logging.INFO):
        response = client.get("/api/session", headers={"Cookie": session_cookies()})

    request_id = response.headers["x-request-id"]
    by_logger = {}
    for record in caplog.records:
        by_logger.setdefault(record.name, []).append(record.request_id)

    assert by_logger["services.session_manager"]
    assert set(by_logger["services.session_manager"]) == {request_id}
    assert set(by_logger["api.boundary"]) == {request_id}


def test_handler_response_passthrough(app, client: TestClient):
    """Test handler responses are passed through without overwriting their headers."""
    async def handler(ctx: RequestContext):
        return JSONResponse({"raw": True}, status_code=201, headers={"Access-Control-Max-Age": "10"})

    add_route(app, "/raw", handler)
    response = client.post("/raw", headers={"Origin": ORIGIN, "Cookie": "_csrf=t", "X-CSRF-Token": "t"})

    assert response.status_code == 201
    assert response.json() == {"raw": True}
    assert response.headers["access-control-max-age"] == "10"
    assert response.headers["access-control-allow-origin"] == ORIGIN
    assert "x-request-id" in response.headers


def test_csrf_can_be_disabled(app, client: TestClient):
    """Test endpoints opting out of CSRF accept POST without a token."""
    async def handler(ctx: RequestContext):
        return {"ok": True}

    add_route(app, "/webhook", handler, require_csrf=False)
    assert client.post("/webhook").status_code == 200


def test_debug_endpoints_hidden(client: TestClient):
    """Test debug endpoints answer 404 while disabled."""
    response = client.get("/api/debug/feature-flags")

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"
    assert "debug" not in response.json()["message"].lower()


def test_debug_endpoints_enabled(backend: FakeSessionBackend):
    """Test debug endpoints respond when enabled."""
    metrics = MetricsRecorder()
    app = create_app(
        settings=build_settings(ENABLE_DEBUG_ENDPOINTS=True),
        backend=backend,
        environ={},
        metrics=metrics,
    )
    client = TestClient(app, raise_server_exceptions=False)

    flags = client.get("/api/debug/feature-flags")
    assert flags.status_code == 200
    assert flags.json()["data"]["status"]["rollout_percentage"] == 100

    counters = client.get("/api/debug/metrics").json()["data"]
    assert counters["backend"] == "memory"
    assert counters["counters"]["requests"] == 1


def test_legacy_bearer_path(backend: FakeSessionBackend):
    """Test the legacy path authenticates the bearer token without refreshing."""
    backend.add_valid("bearer-token", user_id="legacy-user")
    backend.add_refreshable("refresh")
    app = create_app(
        settings=build_settings(ENABLE_AUTH_MIDDLEWARE=False, AUTH_ROLLOUT_PERCENTAGE=0),
        backend=backend,
        environ={},
        metrics=MetricsRecorder(),
    )
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/api/session", headers={"Authorization": "Bearer bearer-token"})
    assert response.status_code == 200
    assert response.json()["data"]["user"]["id"] == "legacy-user"

    response = client.get("/api/session", headers={"Cookie": session_cookies(access="stale", refresh="refresh")})
    assert response.status_code == 401
    assert backend.refresh_calls == []
