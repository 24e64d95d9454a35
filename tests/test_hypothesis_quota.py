"""
Hypothesis Property-Based Tests for the quota components.

Balance bounds, window admission limits and key quota invariants.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from fashionai_quota.db.models import UserCredits
from fashionai_quota.models.api import GenerationType, KeyService, PlanTier
from fashionai_quota.services.api_keys import ApiKeyManager
from fashionai_quota.services.cache import TTLCache
from fashionai_quota.services.credits import PLAN_LIMITS, CreditLedger, _advance_reset_window
from fashionai_quota.services.rate_limiter import RateLimiter

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

# ============================================================================
# Hypothesis Strategies
# ============================================================================

plan_tiers = st.sampled_from(list(PlanTier))
generation_types = st.sampled_from(list(GenerationType))
ledger_ops = st.lists(
    st.tuples(st.sampled_from(["deduct", "refund"]), generation_types),
    min_size=1,
    max_size=40,
)
intervals = st.integers(min_value=1, max_value=72).map(lambda h: timedelta(hours=h))
gaps = st.integers(min_value=0, max_value=60 * 24 * 60).map(lambda m: timedelta(minutes=m))


def _session_for(account: MagicMock) -> AsyncMock:
    session = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=account)
    session.execute = AsyncMock(return_value=result)
    session.add = MagicMock()
    return session


def _account(tier: PlanTier, remaining: int) -> MagicMock:
    account = MagicMock(spec=UserCredits)
    account.user_id = "user-123"
    account.plan_tier = tier.value
    account.credits_total = PLAN_LIMITS[tier]
    account.credits_remaining = remaining
    account.last_reset = NOW - timedelta(hours=1)
    account.next_reset = NOW + timedelta(hours=23)
    return account


# ============================================================================
# Credit Ledger
# ============================================================================


class TestLedgerBalanceProperties:
    """Balance never leaves [0, credits_total]."""

    @given(plan_tiers, st.data(), ledger_ops)
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_balance_stays_in_bounds(self, tier, data, ops):
        """Any interleaving of deducts and refunds keeps the balance valid."""
        remaining = data.draw(st.integers(min_value=0, max_value=PLAN_LIMITS[tier]))
        account = _account(tier, remaining)
        ledger = CreditLedger(_session_for(account))

        with patch("fashionai_quota.services.credits._utc_now", return_value=NOW):
            for op, generation_type in ops:
                if op == "deduct":
                    result = await ledger.deduct_credit("user-123", generation_type)
                else:
                    result = await ledger.refund_credit("user-123", generation_type)

                assert 0 <= account.credits_remaining <= account.credits_total
                if result.success:
                    assert result.credits_remaining == account.credits_remaining

    @given(plan_tiers, st.integers(min_value=0, max_value=400))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_successful_deductions_bounded_by_balance(self, tier, attempts):
        """Without a reset, at most credits_remaining try-ons succeed."""
        account = _account(tier, PLAN_LIMITS[tier])
        ledger = CreditLedger(_session_for(account))

        with patch("fashionai_quota.services.credits._utc_now", return_value=NOW):
            successes = 0
            for _ in range(attempts):
                result = await ledger.deduct_credit("user-123", GenerationType.TRY_ON)
                successes += int(result.success)

        assert successes == min(attempts, PLAN_LIMITS[tier])
        assert account.credits_remaining == PLAN_LIMITS[tier] - successes


class TestResetWindowProperties:
    """Property-based tests for _advance_reset_window."""

    @given(gaps, intervals)
    @settings(max_examples=200)
    def test_window_covers_now(self, gap, interval):
        """After advancing, last_reset <= now < next_reset."""
        next_reset = NOW - gap

        last, new_next = _advance_reset_window(next_reset, NOW, interval)

        assert last <= NOW < new_next
        assert new_next - last == interval
        assert last >= next_reset

    @given(gaps, intervals)
    @settings(max_examples=200)
    def test_window_stays_on_schedule(self, gap, interval):
        """Resets land on whole multiples of the interval from the old schedule."""
        next_reset = NOW - gap

        last, _ = _advance_reset_window(next_reset, NOW, interval)

        assert (last - next_reset) % interval == timedelta(0)


# ============================================================================
# Rate Limiter
# ============================================================================


class TestRateLimiterProperties:
    """No window ever admits more than max_requests."""

    @given(
        st.integers(min_value=1, max_value=10),
        st.integers(min_value=1, max_value=2000),
        st.lists(st.integers(min_value=0, max_value=500), min_size=1, max_size=100),
    )
    @settings(max_examples=100)
    def test_admitted_requests_respect_window(self, max_requests, window_ms, steps):
        now = [0.0]
        limiter = RateLimiter(max_requests=max_requests, window_ms=window_ms, clock=lambda: now[0])
        admitted: list[float] = []

        for step in steps:
            now[0] += step
            if limiter.can_make_request():
                admitted.append(now[0])

        for i, start in enumerate(admitted):
            in_window = [t for t in admitted[i:] if t - start < window_ms]
            assert len(in_window) <= max_requests

    @given(
        st.integers(min_value=1, max_value=10),
        st.integers(min_value=1, max_value=2000),
        st.lists(st.integers(min_value=0, max_value=500), max_size=50),
    )
    @settings(max_examples=100)
    def test_wait_time_within_window(self, max_requests, window_ms, steps):
        now = [0.0]
        limiter = RateLimiter(max_requests=max_requests, window_ms=window_ms, clock=lambda: now[0])

        for step in steps:
            now[0] += step
            limiter.can_make_request()

        assert 0 <= limiter.get_time_until_next_request() <= window_ms


# ============================================================================
# API Key Manager
# ============================================================================


class TestApiKeyManagerProperties:
    """Per-key usage never exceeds the daily limit."""

    @given(
        st.integers(min_value=1, max_value=5),
        st.integers(min_value=1, max_value=5),
        st.integers(min_value=0, max_value=60),
    )
    @settings(max_examples=100)
    def test_total_selections_bounded(self, key_count, daily_limit, attempts):
        manager = ApiKeyManager(default_daily_limit=daily_limit, clock=lambda: NOW)
        manager.register_service(KeyService.OPENAI, [f"key-{i}" for i in range(key_count)])

        picks = [manager.get_next_key(KeyService.OPENAI) for _ in range(attempts)]
        selected = [key for key in picks if key is not None]

        assert len(selected) == min(attempts, key_count * daily_limit)
        for i in range(key_count):
            assert selected.count(f"key-{i}") <= daily_limit


# ============================================================================
# TTL Cache
# ============================================================================


class TestCacheProperties:
    """Reads never return an expired value."""

    @given(
        st.integers(min_value=0, max_value=10_000),
        st.integers(min_value=0, max_value=20_000),
        st.text(max_size=20),
    )
    @settings(max_examples=100)
    def test_value_visible_only_before_expiry(self, ttl_ms, elapsed_ms, value):
        now = [0.0]
        cache = TTLCache(clock=lambda: now[0])
        cache.set("k", value, ttl_ms=ttl_ms)

        now[0] += elapsed_ms
        sentinel = object()
        got = cache.get("k", default=sentinel)

        if elapsed_ms < ttl_ms:
            assert got == value
        else:
            assert got is sentinel
            assert cache.size() == 0
