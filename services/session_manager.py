"""
Session Manager

Reconstructs the session from cookies on every request, validates the access
token against the session backend and transparently refreshes it when it is
invalid. Any backend failure fails closed (the request is unauthenticated).

States:
    NO_SESSION           no access token cookie
    VALID                valid, at least the refresh threshold left
    VALID_NEEDS_REFRESH  valid, but expiring within the threshold
    REFRESHED            invalid access token replaced via the refresh token
    INVALID              invalid and not refreshable
"""

import enum
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from core.config import Settings
from core.cookies import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    set_session_cookies,
)
from core.errors import ErrorCode
from core.logger import get_logger
from core.security import is_token_expired
from models.security import CookieOptions
from models.session import RefreshedSession, Session, SessionUser
from services.session_backend import SessionBackend

logger = get_logger(__name__)


class SessionState(str, enum.Enum):
    NO_SESSION = "NO_SESSION"
    VALID = "VALID"
    VALID_NEEDS_REFRESH = "VALID_NEEDS_REFRESH"
    REFRESHED = "REFRESHED"
    INVALID = "INVALID"


AUTHENTICATED_STATES = {SessionState.VALID, SessionState.VALID_NEEDS_REFRESH, SessionState.REFRESHED}


@dataclass
class SessionResult:
    """Outcome of session validation for one request."""
    state: SessionState
    user: Optional[SessionUser] = None
    session: Optional[Session] = None
    cookies: List[str] = field(default_factory=list)
    reason: str = ErrorCode.UNAUTHORIZED.value

    @property
    def authenticated(self) -> bool:
        return self.state in AUTHENTICATED_STATES

    @property
    def needs_refresh(self) -> bool:
        return self.state in (SessionState.VALID_NEEDS_REFRESH, SessionState.REFRESHED)

    def as_contract(self) -> Optional[Dict[str, object]]:
        """{user, session, needs_refresh} when authenticated, else None."""
        if not self.authenticated:
            return None
        return {"user": self.user, "session": self.session, "needs_refresh": self.needs_refresh}


class SessionManager:
    """Cookie session validation with transparent refresh."""

    def __init__(
        self,
        backend: SessionBackend,
        refresh_threshold_seconds: int = 300,
        access_cookie_max_age: int = 3600,
        refresh_cookie_max_age: int = 7 * 24 * 3600,
        cookie_options: Optional[CookieOptions] = None,
        proactive_refresh: bool = False
    ):
        self.backend = backend
        self.refresh_threshold_seconds = refresh_threshold_seconds
        self.access_cookie_max_age = access_cookie_max_age
        self.refresh_cookie_max_age = refresh_cookie_max_age
        self.cookie_options = cookie_options or CookieOptions()
        self.proactive_refresh = proactive_refresh

    @classmethod
    def from_settings(cls, backend: SessionBackend, settings: Settings) -> "SessionManager":
        return cls(
            backend=backend,
            refresh_threshold_seconds=settings.SESSION_REFRESH_THRESHOLD_SECONDS,
            access_cookie_max_age=settings.ACCESS_TOKEN_COOKIE_MAX_AGE,
            refresh_cookie_max_age=settings.REFRESH_TOKEN_COOKIE_MAX_AGE,
            cookie_options=CookieOptions(
                secure=settings.COOKIE_SECURE,
                domain=settings.COOKIE_DOMAIN or None,
            ),
            proactive_refresh=settings.SESSION_PROACTIVE_REFRESH,
        )

    async def validate(self, cookies: Dict[str, str], now: Optional[float] = None) -> SessionResult:
        """
        Validate the session carried by request cookies.

        Args:
            cookies: Parsed request cookies
            now: Current time in epoch seconds (for tests)

        Returns:
            SessionResult
        """
        now = time.time() if now is None else now
        access_token = cookies.get(ACCESS_TOKEN_COOKIE) or None
        refresh_token = cookies.get(REFRESH_TOKEN_COOKIE) or None

        if not access_token:
            return SessionResult(state=SessionState.NO_SESSION)

        try:
            validated = await self.backend.validate(access_token)
        except Exception as e:
            logger.error(f"Session validation failed: {type(e).__name__}: {str(e)}")
            return SessionResult(state=SessionState.INVALID)

        if validated is not None:
            session = Session(
                user_id=validated.user.id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=validated.expires_at,
            )
            near_expiry = (
                validated.expires_at is not None
                and validated.expires_at - now < self.refresh_threshold_seconds
            )
            if not near_expiry:
                return SessionResult(state=SessionState.VALID, user=validated.user, session=session)

            if self.proactive_refresh and refresh_token:
                refreshed = await self._refresh(refresh_token, fallback_user=validated.user)
                if refreshed is not None:
                    return refreshed
            return SessionResult(state=SessionState.VALID_NEEDS_REFRESH, user=validated.user, session=session)

        reason = ErrorCode.SESSION_EXPIRED.value if is_token_expired(access_token, now) \
            else ErrorCode.UNAUTHORIZED.value

        if not refresh_token:
            return SessionResult(state=SessionState.INVALID, reason=reason)

        refreshed = await self._refresh(refresh_token)
        if refreshed is None:
            return SessionResult(state=SessionState.INVALID, reason=reason)
        return refreshed

    async def validate_bearer(self, access_token: Optional[str]) -> SessionResult:
        """
        Validate a token from the legacy Authorization: Bearer path.

        No refresh is attempted on this path.
        """
        if not access_token:
            return SessionResult(state=SessionState.NO_SESSION)

        try:
            validated = await self.backend.validate(access_token)
        except Exception as e:
            logger.error(f"Bearer token validation failed: {type(e).__name__}: {str(e)}")
            return SessionResult(state=SessionState.INVALID)

        if validated is None:
            reason = ErrorCode.SESSION_EXPIRED.value if is_token_expired(access_token) \
                else ErrorCode.UNAUTHORIZED.value
            return SessionResult(state=SessionState.INVALID, reason=reason)

        return SessionResult(
            state=SessionState.VALID,
            user=validated.user,
            session=Session(
                user_id=validated.user.id,
                access_token=access_token,
                expires_at=validated.expires_at,
            ),
        )

    async def _refresh(
        self,
        refresh_token: str,
        fallback_user: Optional[SessionUser] = None
    ) -> Optional[SessionResult]:
        try:
            tokens = await self.backend.refresh(refresh_token)
        except Exception as e:
            logger.error(f"Session refresh failed: {type(e).__name__}: {str(e)}")
            return None

        if tokens is None:
            return None

        user = tokens.user or fallback_user
        if user is None:
            user = await self._user_for(tokens)
            if user is None:
                return None

        return SessionResult(
            state=SessionState.REFRESHED,
            user=user,
            session=Session(
                user_id=user.id,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_at=tokens.expires_at,
            ),
            cookies=set_session_cookies(
                tokens.access_token,
                tokens.refresh_token,
                access_max_age=self.access_cookie_max_age,
                refresh_max_age=self.refresh_cookie_max_age,
                options=self.cookie_options,
            ),
        )

    async def _user_for(self, tokens: RefreshedSession) -> Optional[SessionUser]:
        """Look up the user of freshly issued tokens when the refresh response omits it."""
        try:
            validated = await self.backend.validate(tokens.access_token)
        except Exception as e:
            logger.error(f"Validation of refreshed token failed: {type(e).__name__}: {str(e)}")
            return None
        return validated.user if validated else None
