"""
Security Utilities

JWT helpers for access tokens issued by the identity provider.
"""

import time
from typing import Optional

from jose import JWTError, jwt
from jose.exceptions import JOSEError


def decode_access_token(
    token: str,
    secret: str,
    algorithm: str = "HS256",
    audience: Optional[str] = "authenticated"
) -> Optional[dict]:
    """
    Decode and verify a JWT access token.

    Args:
        token: JWT token string
        secret: Signing secret shared with the identity provider
        algorithm: Signing algorithm
        audience: Expected "aud" claim (None to skip the check)

    Returns:
        dict: Decoded token payload if valid, None otherwise

    Example:
        ```python
        payload = decode_access_token(token, settings.SUPABASE_JWT_SECRET)
        if payload:
            user_id = payload.get("sub")
        ```
    """
    options = {"verify_aud": audience is not None}
    try:
        return jwt.decode(token, secret, algorithms=[algorithm], audience=audience, options=options)
    except JWTError:
        return None


def get_token_expiry(token: Optional[str]) -> Optional[int]:
    """
    Read the "exp" claim of a JWT without verifying its signature.

    Only for timing decisions (refresh threshold, expiry reason); the
    token itself is always validated by the session backend.

    Args:
        token: JWT token string

    Returns:
        int: Expiry in epoch seconds, or None if absent/unreadable
    """
    if not token:
        return None
    try:
        claims = jwt.get_unverified_claims(token)
    except JOSEError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        return int(exp)
    return None


def is_token_expired(token: Optional[str], now: Optional[float] = None) -> bool:
    """Check whether a token carries an "exp" claim in the past."""
    expires_at = get_token_expiry(token)
    if expires_at is None:
        return False
    return expires_at <= (now if now is not None else time.time())
