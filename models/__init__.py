"""
Value Objects Package

Contains the per-request value objects used by the security boundary.
None of them are persisted.
"""

from models.session import Session, SessionUser, RefreshedSession
from models.security import CookieOptions, CorsDecision, ErrorClassification, FeatureFlagDecision
from models.envelope import ApiResponse

__all__ = [
    "Session",
    "SessionUser",
    "RefreshedSession",
    "CookieOptions",
    "CorsDecision",
    "ErrorClassification",
    "FeatureFlagDecision",
    "ApiResponse",
]
