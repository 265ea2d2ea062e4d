"""
CORS Origin Guard

Validates the request Origin against an allow-list and produces the CORS
response headers.

Credentialed responses can never use a wildcard origin, so the guard echoes
an allowed origin back and answers everything else with the canonical
(production) origin, which the browser will not match.
"""

from typing import Dict, Iterable, Optional
from urllib.parse import urlsplit

from models.security import CorsDecision

ALLOW_HEADERS = "Content-Type, Authorization, X-CSRF-Token, X-Request-ID"
ALLOW_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
EXPOSE_HEADERS = "X-Request-ID"


class CorsOriginGuard:
    """Origin allow-list with a structural rule for deploy previews."""

    def __init__(
        self,
        allowed_origins: Iterable[str],
        preview_suffix: str = ".netlify.app",
        preview_product: str = "stageflow",
        max_age: int = 86400,
        omit_disallowed: bool = False
    ):
        self.allowed_origins = tuple(allowed_origins)
        if not self.allowed_origins:
            raise ValueError("CORS allow-list must contain at least one origin")
        self.preview_suffix = preview_suffix
        self.preview_product = preview_product
        self.max_age = max_age
        self.omit_disallowed = omit_disallowed

    @property
    def canonical_origin(self) -> str:
        return self.allowed_origins[0]

    def is_preview_origin(self, origin: Optional[str]) -> bool:
        """
        Check if an origin is an ephemeral deploy preview.

        The host must be a single label directly under the platform suffix,
        and that label must name the product, e.g.
        https://deploy-preview-42--stageflow.netlify.app
        """
        if not origin or not self.preview_suffix or not self.preview_product:
            return False

        try:
            parsed = urlsplit(origin)
            port = parsed.port
        except ValueError:
            return False
        if parsed.scheme != "https" or port is not None or parsed.username or parsed.password:
            return False
        if parsed.path or parsed.query or parsed.fragment:
            return False

        host = (parsed.hostname or "").lower()
        suffix = self.preview_suffix.lower()
        if not suffix.startswith("."):
            suffix = f".{suffix}"
        if not host.endswith(suffix):
            return False

        label = host[:-len(suffix)]
        return bool(label) and "." not in label and self.preview_product.lower() in label

    def is_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False
        if origin in self.allowed_origins:
            return True
        return self.is_preview_origin(origin)

    def resolve(self, origin: Optional[str]) -> str:
        """Return the origin if allowed, otherwise the canonical origin."""
        if self.is_allowed(origin):
            return origin
        return self.canonical_origin

    def decide(self, origin: Optional[str]) -> CorsDecision:
        allowed = self.is_allowed(origin)
        return CorsDecision(
            allowed_origin=origin if allowed else self.canonical_origin,
            is_echoed=allowed
        )

    def build_headers(self, origin: Optional[str]) -> Dict[str, str]:
        """
        Build the complete CORS header set for a response.

        Args:
            origin: The request's Origin header

        Returns:
            dict: Header name -> value
        """
        decision = self.decide(origin)
        headers = {
            "Access-Control-Allow-Origin": decision.allowed_origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": ALLOW_METHODS,
            "Access-Control-Allow-Headers": ALLOW_HEADERS,
            "Access-Control-Expose-Headers": EXPOSE_HEADERS,
            "Access-Control-Max-Age": str(self.max_age),
            "Content-Type": "application/json",
        }
        if self.omit_disallowed and not decision.is_echoed:
            del headers["Access-Control-Allow-Origin"]
        return headers

    @classmethod
    def from_settings(cls, settings) -> "CorsOriginGuard":
        return cls(
            allowed_origins=settings.CORS_ALLOWED_ORIGINS,
            preview_suffix=settings.CORS_PREVIEW_SUFFIX,
            preview_product=settings.CORS_PREVIEW_PRODUCT,
            max_age=settings.CORS_MAX_AGE,
            omit_disallowed=settings.CORS_OMIT_DISALLOWED,
        )
