"""
Security Value Objects

Immutable values derived per request by the security components.
"""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict


class CookieOptions(BaseModel):
    """Attributes of a Set-Cookie instruction."""
    model_config = ConfigDict(frozen=True)

    http_only: bool = True
    secure: bool = True
    same_site: Optional[Literal["Strict", "Lax", "None"]] = "Strict"
    max_age: Optional[int] = 3600
    path: Optional[str] = "/"
    domain: Optional[str] = None


class CorsDecision(BaseModel):
    """Origin to send back in Access-Control-Allow-Origin."""
    model_config = ConfigDict(frozen=True)

    allowed_origin: str
    is_echoed: bool


class ErrorClassification(BaseModel):
    """HTTP status, error code and retry advice for a failure."""
    model_config = ConfigDict(frozen=True)

    status_code: int
    code: str
    retryable: bool = False


class FeatureFlagDecision(BaseModel):
    """Whether an endpoint runs on the cookie-session middleware."""
    model_config = ConfigDict(frozen=True)

    use_new_middleware: bool
    reason: str
