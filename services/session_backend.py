"""
Session Backend

Client for the identity provider that validates access tokens and exchanges
refresh tokens. The middleware only depends on the SessionBackend interface;
SupabaseSessionBackend talks to Supabase GoTrue over HTTP.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from core.config import Settings
from core.logger import get_logger
from core.security import decode_access_token, get_token_expiry
from models.session import RefreshedSession, SessionUser

logger = get_logger(__name__)


class ValidatedToken:
    """User and expiry of a valid access token."""

    def __init__(self, user: SessionUser, expires_at: Optional[int] = None):
        self.user = user
        self.expires_at = expires_at


class SessionBackend(ABC):
    """Identity provider capability consumed by the session manager."""

    @abstractmethod
    async def validate(self, access_token: str) -> Optional[ValidatedToken]:
        """Return the token's user and expiry, or None if the token is invalid."""

    @abstractmethod
    async def refresh(self, refresh_token: str) -> Optional[RefreshedSession]:
        """Exchange a refresh token for new tokens, or None if it is invalid."""


def _user_from_payload(payload: Dict[str, Any]) -> Optional[SessionUser]:
    user_id = payload.get("id") or payload.get("sub")
    if not user_id:
        return None
    return SessionUser(
        id=str(user_id),
        email=payload.get("email"),
        role=payload.get("role"),
        raw=payload,
    )


class SupabaseSessionBackend(SessionBackend):
    """Session backend for Supabase GoTrue."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        jwt_secret: str = "",
        jwt_algorithm: str = "HS256",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseSessionBackend":
        return cls(
            base_url=settings.SUPABASE_URL,
            api_key=settings.SUPABASE_ANON_KEY,
            jwt_secret=settings.SUPABASE_JWT_SECRET,
            jwt_algorithm=settings.JWT_ALGORITHM,
            timeout=settings.SESSION_BACKEND_TIMEOUT_SECONDS,
        )

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Content-Type": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        if not self.base_url:
            raise RuntimeError("Missing Supabase configuration")
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def validate(self, access_token: str) -> Optional[ValidatedToken]:
        """
        Validate an access token.

        With a JWT secret configured the signature is verified locally;
        otherwise the token is checked against GET /auth/v1/user.

        Args:
            access_token: Access token from the session cookie

        Returns:
            ValidatedToken or None if the token is invalid

        Raises:
            httpx.HTTPError: If the identity provider cannot be reached
        """
        if self.jwt_secret:
            payload = decode_access_token(access_token, self.jwt_secret, self.jwt_algorithm)
            if payload is None:
                return None
            user = _user_from_payload(payload)
            return ValidatedToken(user, get_token_expiry(access_token)) if user else None

        async with self._client() as client:
            response = await client.get("/auth/v1/user", headers=self._headers(access_token))

        if response.status_code != 200:
            logger.info(f"Access token rejected by identity provider (status={response.status_code})")
            return None

        user = _user_from_payload(response.json())
        if user is None:
            return None
        return ValidatedToken(user, get_token_expiry(access_token))

    async def refresh(self, refresh_token: str) -> Optional[RefreshedSession]:
        """
        Exchange a refresh token via POST /auth/v1/token?grant_type=refresh_token.

        Args:
            refresh_token: Refresh token from the session cookie

        Returns:
            RefreshedSession or None if the refresh token is invalid

        Raises:
            httpx.HTTPError: If the identity provider cannot be reached
        """
        async with self._client() as client:
            response = await client.post(
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                headers=self._headers(),
                json={"refresh_token": refresh_token}
            )

        if response.status_code != 200:
            logger.info(f"Refresh token rejected by identity provider (status={response.status_code})")
            return None

        data = response.json()
        access_token = data.get("access_token")
        new_refresh_token = data.get("refresh_token")
        if not access_token or not new_refresh_token:
            logger.warning("Identity provider refresh response missing tokens")
            return None

        expires_at = data.get("expires_at")
        if not isinstance(expires_at, int):
            expires_at = get_token_expiry(access_token)

        user_payload = data.get("user")
        return RefreshedSession(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_at=expires_at,
            user=_user_from_payload(user_payload) if isinstance(user_payload, dict) else None,
        )
