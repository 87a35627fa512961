"""
Unit tests for tier -> entitlement resolution.
"""

import pytest

from app.domain.subscription import (
    TIER_ENTITLEMENTS,
    SubscriptionStatus,
    SubscriptionTier,
    crosses_remote_boundary,
    parse_tier,
    resolve_entitlement,
)


class TestResolveEntitlement:
    """Tests for resolve_entitlement."""

    def test_every_tier_has_an_entitlement(self):
        assert set(TIER_ENTITLEMENTS) == set(SubscriptionTier)

    def test_free_tier_is_local_only(self):
        entitlement = resolve_entitlement(SubscriptionTier.FREE)

        assert entitlement.has_remote_access is False
        assert entitlement.quotas.max_local_entries == 3
        assert entitlement.quotas.max_local_schedules == 2
        assert entitlement.quotas.max_local_routines == 1

    @pytest.mark.parametrize("tier", [
        SubscriptionTier.SLEEP_FOCUSED,
        SubscriptionTier.FULL_TRANSFORMATION,
        SubscriptionTier.ELITE_PERFORMANCE,
    ])
    def test_paid_tiers_have_remote_access(self, tier):
        entitlement = resolve_entitlement(tier)

        assert entitlement.has_remote_access is True
        assert entitlement.features.cloud_storage is True

    def test_elite_quotas_are_unbounded(self):
        quotas = resolve_entitlement(SubscriptionTier.ELITE_PERFORMANCE).quotas

        assert quotas.max_local_entries is None
        assert quotas.max_local_schedules is None
        assert quotas.max_local_routines is None

    def test_accepts_raw_tier_values(self):
        assert resolve_entitlement("full-transformation").tier == SubscriptionTier.FULL_TRANSFORMATION

    @pytest.mark.parametrize("value", ["platinum", "", None, "FREE "])
    def test_unknown_values_never_grant_paid_capabilities(self, value):
        entitlement = resolve_entitlement(value)

        assert entitlement.tier == SubscriptionTier.FREE
        assert entitlement.has_remote_access is False

    def test_parse_tier_passes_enum_through(self):
        assert parse_tier(SubscriptionTier.SLEEP_FOCUSED) is SubscriptionTier.SLEEP_FOCUSED


class TestTierOrdering:
    """Tiers are a closed, ordered set."""

    def test_tiers_are_ordered_lowest_to_highest(self):
        assert (
            SubscriptionTier.FREE
            < SubscriptionTier.SLEEP_FOCUSED
            < SubscriptionTier.FULL_TRANSFORMATION
            < SubscriptionTier.ELITE_PERFORMANCE
        )

    def test_max_picks_highest_tier(self):
        assert max(SubscriptionTier) == SubscriptionTier.ELITE_PERFORMANCE


class TestRemoteBoundary:
    """Tests for crosses_remote_boundary."""

    def test_free_to_paid_crosses(self):
        assert crosses_remote_boundary(SubscriptionTier.FREE, SubscriptionTier.SLEEP_FOCUSED)

    def test_paid_to_paid_does_not_cross(self):
        assert not crosses_remote_boundary(
            SubscriptionTier.SLEEP_FOCUSED,
            SubscriptionTier.ELITE_PERFORMANCE,
        )

    def test_downgrade_does_not_cross(self):
        assert not crosses_remote_boundary(SubscriptionTier.FULL_TRANSFORMATION, SubscriptionTier.FREE)


class TestEffectiveTier:
    """Inactive subscriptions gate like free."""

    def test_inactive_status_is_effectively_free(self):
        status = SubscriptionStatus(
            user_id="user-1",
            tier=SubscriptionTier.ELITE_PERFORMANCE,
            is_active=False,
        )
        assert status.effective_tier == SubscriptionTier.FREE

    def test_active_status_keeps_tier(self):
        status = SubscriptionStatus(
            user_id="user-1",
            tier=SubscriptionTier.SLEEP_FOCUSED,
            is_active=True,
        )
        assert status.effective_tier == SubscriptionTier.SLEEP_FOCUSED
