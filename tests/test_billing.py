"""
Unit tests for billing context resolution.

Tests priority order and tolerance of bad credential records.
"""

import json

import pytest

from claude_spend.core.billing import (
    BillingContext,
    get_subscription_monthly_fee,
    is_subscription,
    load_credential_record,
    parse_billing_context,
    resolve_billing_context,
)


def _record(subscription=None, tier=None):
    oauth = {}
    if subscription is not None:
        oauth["subscriptionType"] = subscription
    if tier is not None:
        oauth["rateLimitTier"] = tier
    return {"claudeAiOauth": oauth}


class TestResolution:
    """Test the fixed resolution priority."""

    def test_default_is_api(self):
        """No override, no key, no credentials: pay-per-token."""
        assert resolve_billing_context() == BillingContext.API

    def test_override_wins(self):
        """Explicit override beats every other signal."""
        context = resolve_billing_context(
            override="max_5x",
            external_credential_present=True,
            credential_record=_record("pro"),
        )
        assert context == BillingContext.MAX_5X

    def test_invalid_override_is_ignored(self):
        """An unknown override falls through to the next rule."""
        context = resolve_billing_context(override="enterprise", credential_record=_record("pro"))
        assert context == BillingContext.PRO

    def test_api_key_beats_subscription(self):
        """Users with both an API key and a plan are billed per token."""
        context = resolve_billing_context(
            external_credential_present=True,
            credential_record=_record("max", "default_claude_max_20x"),
        )
        assert context == BillingContext.API

    @pytest.mark.parametrize("subscription,tier,expected", [
        ("max", "default_claude_max_20x", BillingContext.MAX_20X),
        ("max", "default_claude_max_5x", BillingContext.MAX_5X),
        ("max", None, BillingContext.MAX_20X),
        ("pro", None, BillingContext.PRO),
        (None, "claude_pro", BillingContext.PRO),
        ("free", "", BillingContext.API),
    ])
    def test_subscription_markers(self, subscription, tier, expected):
        """Credential markers map to plan tiers."""
        assert resolve_billing_context(credential_record=_record(subscription, tier)) == expected

    @pytest.mark.parametrize("record", [None, {}, {"claudeAiOauth": "yes"}, ["pro"]])
    def test_malformed_record_defaults_to_api(self, record):
        """Unexpected record shapes never raise."""
        assert resolve_billing_context(credential_record=record) == BillingContext.API


class TestCredentialRecord:
    """Test reading the credential file."""

    def test_missing_file(self, tmp_path):
        assert load_credential_record(tmp_path / "missing.json") is None

    def test_malformed_file(self, tmp_path):
        path = tmp_path / ".credentials.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_credential_record(path) is None

    def test_non_object_file(self, tmp_path):
        path = tmp_path / ".credentials.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert load_credential_record(path) is None

    def test_valid_file(self, tmp_path):
        path = tmp_path / ".credentials.json"
        path.write_text(json.dumps(_record("pro")), encoding="utf-8")
        record = load_credential_record(path)
        assert resolve_billing_context(credential_record=record) == BillingContext.PRO


class TestPlans:
    """Test plan helpers."""

    def test_monthly_fees(self):
        assert get_subscription_monthly_fee(BillingContext.API) == 0
        assert get_subscription_monthly_fee(BillingContext.PRO) == 20
        assert get_subscription_monthly_fee(BillingContext.MAX_5X) == 100
        assert get_subscription_monthly_fee(BillingContext.MAX_20X) == 200

    def test_is_subscription(self):
        assert not is_subscription(BillingContext.API)
        assert all(is_subscription(c) for c in BillingContext if c != BillingContext.API)

    def test_parse_billing_context(self):
        assert parse_billing_context(" MAX_5X ") == BillingContext.MAX_5X
        with pytest.raises(ValueError, match="billing must be one of"):
            parse_billing_context("team")
