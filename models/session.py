"""
Session Models

Session state reconstructed from cookies on every request.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class SessionUser(BaseModel):
    """Authenticated user as reported by the session backend."""
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """
    Tokens of one authentication grant.

    expires_at is the access token expiry in epoch seconds, when known.
    """
    user_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


class RefreshedSession(BaseModel):
    """Result of a successful refresh-token exchange."""
    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None
    user: Optional[SessionUser] = None
