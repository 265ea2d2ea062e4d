"""
Feature Flags for the Cookie-Session Middleware Rollout

Decides per endpoint (and per browser session) whether a request is
authenticated by the cookie-session middleware or by the legacy
Authorization: Bearer path.

Environment variables:
- ENABLE_AUTH_MIDDLEWARE: master switch
- AUTH_ROLLOUT_PERCENTAGE: 0-100
- AUTH_WHITELIST_USERS / AUTH_BLACKLIST_USERS: comma-separated subject ids
- AUTH_ENABLE_<endpoint>: per-endpoint override (e.g. AUTH_ENABLE_setup_organization=true)
- AUTH_COOKIE_ONLY_ENDPOINTS: endpoints that always use cookie sessions

The configuration is read once at startup and is read-only afterwards.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional

from core.config import Settings
from core.logger import get_logger
from models.security import FeatureFlagDecision

logger = get_logger(__name__)

ENDPOINT_OVERRIDE_PREFIX = "AUTH_ENABLE_"


def _normalize_endpoint(endpoint: str) -> str:
    return endpoint.strip().lower().replace("-", "_")


def hash_to_percentile(value: str) -> int:
    """
    Hash a subject id to a stable bucket in 0-99.

    Uses the 31-multiplier string hash truncated to a signed 32-bit integer.
    """
    hash_value = 0
    for char in value:
        hash_value = ((hash_value << 5) - hash_value + ord(char)) & 0xFFFFFFFF
    if hash_value >= 0x80000000:
        hash_value -= 0x100000000
    return abs(hash_value) % 100


@dataclass(frozen=True)
class FeatureFlagConfig:
    """Rollout configuration for the cookie-session middleware."""
    enabled: bool = False
    rollout_percentage: int = 0
    whitelist: FrozenSet[str] = frozenset()
    blacklist: FrozenSet[str] = frozenset()
    endpoint_overrides: Dict[str, bool] = field(default_factory=dict)
    cookie_only_endpoints: FrozenSet[str] = frozenset()
    debug: bool = False

    @classmethod
    def from_settings(cls, settings: Settings, environ: Optional[Mapping[str, str]] = None) -> "FeatureFlagConfig":
        """
        Build the configuration from settings plus AUTH_ENABLE_* overrides.

        Args:
            settings: Application settings
            environ: Environment mapping scanned for overrides (default: os.environ)
        """
        environ = os.environ if environ is None else environ

        overrides: Dict[str, bool] = {}
        for key, value in environ.items():
            if key.startswith(ENDPOINT_OVERRIDE_PREFIX) and len(key) > len(ENDPOINT_OVERRIDE_PREFIX):
                endpoint = _normalize_endpoint(key[len(ENDPOINT_OVERRIDE_PREFIX):])
                overrides[endpoint] = str(value).strip().lower() == "true"

        return cls(
            enabled=settings.ENABLE_AUTH_MIDDLEWARE,
            rollout_percentage=max(0, min(100, settings.AUTH_ROLLOUT_PERCENTAGE)),
            whitelist=frozenset(settings.AUTH_WHITELIST_USERS),
            blacklist=frozenset(settings.AUTH_BLACKLIST_USERS),
            endpoint_overrides=overrides,
            cookie_only_endpoints=frozenset(
                _normalize_endpoint(endpoint) for endpoint in settings.AUTH_COOKIE_ONLY_ENDPOINTS
            ),
            debug=settings.AUTH_DEBUG,
        )

    def decide(self, endpoint: str, subject_id: Optional[str] = None) -> FeatureFlagDecision:
        """
        Decide whether a request uses the cookie-session middleware.

        Decision order:
        1. Cookie-only endpoint -> new
        2. Master switch off -> legacy
        3. Subject blacklisted -> legacy
        4. Subject whitelisted -> new
        5. Endpoint override -> override value
        6. Subject percentile < rollout percentage -> new
        7. Otherwise -> legacy

        Args:
            endpoint: Endpoint name (e.g. "setup-organization")
            subject_id: Stable id for percentage rollout (session id cookie)

        Returns:
            FeatureFlagDecision
        """
        name = _normalize_endpoint(endpoint)

        if name in self.cookie_only_endpoints:
            decision = FeatureFlagDecision(use_new_middleware=True, reason="cookie_only_endpoint")
        elif not self.enabled:
            decision = FeatureFlagDecision(use_new_middleware=False, reason="master_switch_off")
        elif subject_id and subject_id in self.blacklist:
            decision = FeatureFlagDecision(use_new_middleware=False, reason="blacklisted")
        elif subject_id and subject_id in self.whitelist:
            decision = FeatureFlagDecision(use_new_middleware=True, reason="whitelisted")
        elif name in self.endpoint_overrides:
            decision = FeatureFlagDecision(
                use_new_middleware=self.endpoint_overrides[name], reason="endpoint_override"
            )
        elif self.rollout_percentage >= 100:
            decision = FeatureFlagDecision(use_new_middleware=True, reason="full_rollout")
        elif subject_id and hash_to_percentile(subject_id) < self.rollout_percentage:
            decision = FeatureFlagDecision(use_new_middleware=True, reason="rollout_percentage")
        else:
            decision = FeatureFlagDecision(use_new_middleware=False, reason="default_legacy")

        if self.debug:
            auth_type = "new" if decision.use_new_middleware else "legacy"
            logger.info(
                f"[AUTH_FLAG] endpoint={endpoint} subject={subject_id or 'anonymous'} "
                f"auth={auth_type} reason={decision.reason}"
            )

        return decision

    def status(self) -> dict:
        """Current flag status (for health/debug endpoints)."""
        return {
            "enabled": self.enabled,
            "rollout_percentage": self.rollout_percentage,
            "whitelist_count": len(self.whitelist),
            "blacklist_count": len(self.blacklist),
            "endpoint_override_count": len(self.endpoint_overrides),
            "cookie_only_endpoints": sorted(self.cookie_only_endpoints),
        }

    def validate(self) -> List[str]:
        """
        Check the configuration for conflicts (for startup checks).

        Returns:
            list: Problems found (empty when valid)
        """
        errors: List[str] = []

        overlap = sorted(self.whitelist & self.blacklist)
        if overlap:
            errors.append(f"Users in both whitelist and blacklist: {', '.join(overlap)}")

        if self.enabled and self.rollout_percentage == 0 and not self.whitelist and not self.endpoint_overrides:
            errors.append(
                "ENABLE_AUTH_MIDDLEWARE=true but rollout is 0% with no whitelisted users or endpoint overrides"
            )

        return errors
