"""
Pytest Configuration and Fixtures

Provides shared test fixtures for all tests.
"""

import os
import sys
import time
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from jose import jwt

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from api.main import create_app
from api.middleware.rate_limit import limiter
from core.config import Settings
from core.metrics import MetricsRecorder
from models.session import RefreshedSession, SessionUser
from services.session_backend import SessionBackend, ValidatedToken

ORIGIN = "https://stageflow.startupstage.com"
PREVIEW_ORIGIN = "https://deploy-preview-42--stageflow.netlify.app"
JWT_SECRET = "test-jwt-secret"


def make_token(sub: str = "user-1", expires_in: int = 3600, secret: str = JWT_SECRET, **claims) -> str:
    """Create a signed access token the way the identity provider does."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "email": f"{sub}@example.com",
        "role": "authenticated",
        "aud": "authenticated",
        "iat": now,
        "exp": now + expires_in,
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def cookie_header(cookies: Dict[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


class FakeSessionBackend(SessionBackend):
    """In-memory session backend recording its calls."""

    def __init__(self):
        self.valid: Dict[str, ValidatedToken] = {}
        self.refreshable: Dict[str, RefreshedSession] = {}
        self.validate_calls: List[str] = []
        self.refresh_calls: List[str] = []
        self.error: Optional[Exception] = None

    def add_valid(self, token: str, user_id: str = "user-1", expires_at: Optional[int] = None) -> None:
        if expires_at is None:
            expires_at = int(time.time()) + 3600
        user = SessionUser(id=user_id, email=f"{user_id}@example.com", role="authenticated")
        self.valid[token] = ValidatedToken(user, expires_at)

    def add_refreshable(self, refresh_token: str, access_token: str = "new-access",
                        new_refresh_token: str = "new-refresh", user_id: str = "user-1") -> None:
        self.refreshable[refresh_token] = RefreshedSession(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_at=int(time.time()) + 3600,
            user=SessionUser(id=user_id, email=f"{user_id}@example.com"),
        )

    async def validate(self, access_token: str) -> Optional[ValidatedToken]:
        self.validate_calls.append(access_token)
        if self.error is not None:
            raise self.error
        return self.valid.get(access_token)

    async def refresh(self, refresh_token: str) -> Optional[RefreshedSession]:
        self.refresh_calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        return self.refreshable.get(refresh_token)


def build_settings(**overrides) -> Settings:
    """Settings isolated from any .env file."""
    values = {
        "ENVIRONMENT": "test",
        "CORS_ALLOWED_ORIGINS": f"{ORIGIN},http://localhost:5173",
        "ENABLE_AUTH_MIDDLEWARE": True,
        "AUTH_ROLLOUT_PERCENTAGE": 100,
        "ENABLE_DEBUG_ENDPOINTS": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(scope="function")
def settings() -> Settings:
    return build_settings()


@pytest.fixture(scope="function")
def backend() -> FakeSessionBackend:
    return FakeSessionBackend()


@pytest.fixture(scope="function")
def metrics() -> MetricsRecorder:
    return MetricsRecorder()


@pytest.fixture(scope="function")
def app(settings: Settings, backend: FakeSessionBackend, metrics: MetricsRecorder):
    """Create an application wired to the fake session backend."""
    limiter.reset()
    return create_app(settings=settings, backend=backend, environ={}, metrics=metrics)


@pytest.fixture(scope="function")
def client(app):
    """Create a test client that never re-raises server exceptions."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture(scope="function")
def csrf_token() -> str:
    return "csrf-token-for-tests-0123456789abcdefghijk"
