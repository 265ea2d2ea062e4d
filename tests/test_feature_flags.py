"""
Feature Flag and Debug Gate Tests
"""

import pytest

from core.debug_mode import is_debug_mode_enabled, require_debug_mode
from core.errors import DebugModeDisabledError
from core.feature_flags import FeatureFlagConfig, hash_to_percentile

from conftest import build_settings


def test_hash_to_percentile_is_stable():
    """Test the same subject always lands in the same bucket."""
    assert hash_to_percentile("session-abc") == hash_to_percentile("session-abc")
    assert 0 <= hash_to_percentile("session-abc") < 100
    assert hash_to_percentile("") == 0


def test_hash_to_percentile_known_values():
    """Test bucket values of the 31-multiplier string hash."""
    # "a" hashes to 97, "ab" to 97 * 31 + 98 = 3105
    assert hash_to_percentile("a") == 97
    assert hash_to_percentile("ab") == 5


def test_cookie_only_endpoints_always_use_new_middleware():
    """Test cookie-only endpoints ignore the master switch."""
    flags = FeatureFlagConfig(enabled=False, cookie_only_endpoints=frozenset({"ai_assistant"}))
    decision = flags.decide("ai-assistant")
    assert decision.use_new_middleware is True
    assert decision.reason == "cookie_only_endpoint"


def test_master_switch_off_is_legacy():
    """Test nothing else matters with the master switch off."""
    flags = FeatureFlagConfig(enabled=False, rollout_percentage=100, whitelist=frozenset({"s1"}))
    assert flags.decide("get-deals", "s1").use_new_middleware is False


def test_blacklist_wins_over_whitelist():
    """Test a blacklisted subject stays on the legacy path."""
    flags = FeatureFlagConfig(
        enabled=True,
        rollout_percentage=100,
        whitelist=frozenset({"s1"}),
        blacklist=frozenset({"s1"}),
    )
    decision = flags.decide("get-deals", "s1")
    assert decision.use_new_middleware is False
    assert decision.reason == "blacklisted"


def test_whitelist():
    """Test a whitelisted subject uses the new middleware at 0% rollout."""
    flags = FeatureFlagConfig(enabled=True, whitelist=frozenset({"s1"}))
    assert flags.decide("get-deals", "s1").use_new_middleware is True
    assert flags.decide("get-deals", "s2").use_new_middleware is False


def test_endpoint_override():
    """Test per-endpoint overrides in both directions."""
    flags = FeatureFlagConfig(
        enabled=True,
        rollout_percentage=100,
        endpoint_overrides={"setup_organization": True, "get_deals": False},
    )
    assert flags.decide("setup-organization").reason == "endpoint_override"
    assert flags.decide("setup-organization").use_new_middleware is True
    assert flags.decide("get-deals").use_new_middleware is False


def test_percentage_rollout():
    """Test subjects below the rollout percentile use the new middleware."""
    subject = "ab"  # bucket 5
    assert FeatureFlagConfig(enabled=True, rollout_percentage=6).decide("x", subject).use_new_middleware
    assert not FeatureFlagConfig(enabled=True, rollout_percentage=5).decide("x", subject).use_new_middleware


def test_anonymous_request_at_partial_rollout_is_legacy():
    """Test requests without a subject stay legacy below full rollout."""
    flags = FeatureFlagConfig(enabled=True, rollout_percentage=50)
    assert flags.decide("x").reason == "default_legacy"
    assert FeatureFlagConfig(enabled=True, rollout_percentage=100).decide("x").use_new_middleware


def test_from_settings_reads_overrides():
    """Test loading the configuration from settings and environment."""
    settings = build_settings(
        AUTH_ROLLOUT_PERCENTAGE=250,
        AUTH_WHITELIST_USERS="s1, s2",
        AUTH_BLACKLIST_USERS='["s3"]',
    )
    flags = FeatureFlagConfig.from_settings(settings, environ={
        "AUTH_ENABLE_setup-organization": "true",
        "AUTH_ENABLE_GET_DEALS": "false",
        "UNRELATED": "true",
    })

    assert flags.enabled is True
    assert flags.rollout_percentage == 100
    assert flags.whitelist == frozenset({"s1", "s2"})
    assert flags.blacklist == frozenset({"s3"})
    assert flags.endpoint_overrides == {"setup_organization": True, "get_deals": False}
    assert "ai_assistant_stream" in flags.cookie_only_endpoints


def test_validate_reports_conflicts():
    """Test startup validation finds conflicting configuration."""
    flags = FeatureFlagConfig(enabled=True, whitelist=frozenset({"s1"}), blacklist=frozenset({"s1"}))
    problems = flags.validate()
    assert any("s1" in problem for problem in problems)

    assert FeatureFlagConfig(enabled=True).validate() != []
    assert FeatureFlagConfig(enabled=True, rollout_percentage=10).validate() == []


def test_status():
    """Test the status summary."""
    status = FeatureFlagConfig(enabled=True, rollout_percentage=25, whitelist=frozenset({"a", "b"})).status()
    assert status["enabled"] is True
    assert status["rollout_percentage"] == 25
    assert status["whitelist_count"] == 2


def test_debug_gate():
    """Test the debug gate raises a not-found error while disabled."""
    assert is_debug_mode_enabled(build_settings(ENABLE_DEBUG_ENDPOINTS=True))
    require_debug_mode(build_settings(ENABLE_DEBUG_ENDPOINTS=True))

    with pytest.raises(DebugModeDisabledError):
        require_debug_mode(build_settings(ENABLE_DEBUG_ENDPOINTS=False))
