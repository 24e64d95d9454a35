"""
Tests for credit ledger module-level helpers.

Cost table, display formatting, reset window arithmetic and tier helpers.
"""

from datetime import UTC, datetime, timedelta

import pytest

from fashionai_quota.config import Settings
from fashionai_quota.models.api import GenerationType, PlanTier
from fashionai_quota.models.domain import CreditAccountData
from fashionai_quota.services.credits import (
    PLAN_FEATURES,
    PLAN_LIMITS,
    _advance_reset_window,
    _should_reset,
    can_upgrade,
    format_credit_display,
    get_credit_cost,
    get_time_until_reset,
    plan_limits_from_settings,
    recommend_tier,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


def _info(remaining: int = 7, total: int = 10, next_reset: datetime | None = None):
    return CreditAccountData(
        user_id="user-123",
        credits_remaining=remaining,
        credits_total=total,
        plan_tier=PlanTier.FREE,
        last_reset=NOW - timedelta(hours=1),
        next_reset=next_reset or NOW + timedelta(hours=23),
    )


class TestCreditCost:
    """Tests for get_credit_cost."""

    @pytest.mark.parametrize(
        "operation,cost",
        [
            (GenerationType.TRY_ON, 1),
            (GenerationType.OUTFIT_SUGGESTION, 0),
            (GenerationType.STYLE_ANALYSIS, 1),
            ("wardrobe-try-on", 1),
            ("batch-try-on", 3),
        ],
    )
    def test_known_costs(self, operation, cost: int) -> None:
        assert get_credit_cost(operation) == cost

    def test_unknown_operation_costs_one(self) -> None:
        assert get_credit_cost("hologram-fitting") == 1


class TestPlanTables:
    """Tests for plan limits and features."""

    def test_plan_limits(self) -> None:
        assert PLAN_LIMITS == {PlanTier.FREE: 10, PlanTier.PRO: 100, PlanTier.ELITE: 300}

    def test_features_match_limits(self) -> None:
        for tier, features in PLAN_FEATURES.items():
            assert features.daily_credits == PLAN_LIMITS[tier]

    def test_limits_from_settings(self) -> None:
        config = Settings(
            database_url="postgresql+asyncpg://u:p@localhost/db",
            plan_free_credits=5,
            plan_pro_credits=50,
            plan_elite_credits=500,
        )

        assert plan_limits_from_settings(config) == {
            PlanTier.FREE: 5,
            PlanTier.PRO: 50,
            PlanTier.ELITE: 500,
        }


class TestDisplayHelpers:
    """Tests for display formatting."""

    def test_format_credit_display(self) -> None:
        assert format_credit_display(_info(remaining=7)) == "7/10"

    def test_format_credit_display_none(self) -> None:
        assert format_credit_display(None) == "N/A"

    def test_time_until_reset(self) -> None:
        info = _info(next_reset=NOW + timedelta(hours=5, minutes=30, seconds=59))

        assert get_time_until_reset(info, now=NOW) == "5h 30m"

    def test_time_until_reset_under_an_hour(self) -> None:
        info = _info(next_reset=NOW + timedelta(minutes=3))

        assert get_time_until_reset(info, now=NOW) == "0h 3m"

    def test_time_until_reset_past(self) -> None:
        info = _info(next_reset=NOW - timedelta(seconds=1))

        assert get_time_until_reset(info, now=NOW) == "Resetting now..."

    def test_time_until_reset_none(self) -> None:
        assert get_time_until_reset(None) == "Unknown"

    @pytest.mark.parametrize(
        "tier,expected",
        [(PlanTier.FREE, True), (PlanTier.PRO, True), (PlanTier.ELITE, False)],
    )
    def test_can_upgrade(self, tier: PlanTier, expected: bool) -> None:
        assert can_upgrade(tier) is expected

    @pytest.mark.parametrize(
        "average,tier",
        [
            (0.0, PlanTier.FREE),
            (19.9, PlanTier.FREE),
            (20.0, PlanTier.PRO),
            (99.9, PlanTier.PRO),
            (100.0, PlanTier.ELITE),
        ],
    )
    def test_recommend_tier(self, average: float, tier: PlanTier) -> None:
        assert recommend_tier(average) == tier


class TestResetWindow:
    """Tests for reset scheduling arithmetic."""

    def test_should_reset_at_boundary(self) -> None:
        assert _should_reset(NOW, NOW) is True
        assert _should_reset(NOW + timedelta(microseconds=1), NOW) is False

    def test_single_interval_advances_by_one_day(self) -> None:
        next_reset = NOW - timedelta(hours=1)

        last, new_next = _advance_reset_window(next_reset, NOW, timedelta(hours=24))

        assert last == next_reset
        assert new_next == next_reset + timedelta(hours=24)

    def test_exact_boundary_advances_one_interval(self) -> None:
        last, new_next = _advance_reset_window(NOW, NOW, timedelta(hours=24))

        assert last == NOW
        assert new_next == NOW + timedelta(hours=24)

    def test_many_intervals_catch_up(self) -> None:
        next_reset = NOW - timedelta(days=10, minutes=1)

        last, new_next = _advance_reset_window(next_reset, NOW, timedelta(hours=24))

        assert last <= NOW < new_next
        assert new_next - last == timedelta(hours=24)
        assert (last - next_reset) % timedelta(hours=24) == timedelta(0)
