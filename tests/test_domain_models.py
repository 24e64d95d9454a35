"""
Tests for domain dataclasses and the exception hierarchy.
"""

from datetime import UTC, date, datetime, timedelta

import pytest

from fashionai_quota.exceptions import (
    AccountNotFoundError,
    DatabaseError,
    InsufficientCreditsError,
    NoKeysAvailableError,
    QuotaError,
    UnexpectedLedgerError,
    UnknownServiceError,
)
from fashionai_quota.models.api import ErrorCode, KeyService, PlanTier
from fashionai_quota.models.domain import ApiKeyEntry, CreditAccountData, DeductionResult

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


class TestCreditAccountData:
    """Tests for CreditAccountData validation."""

    def test_valid_snapshot(self) -> None:
        info = CreditAccountData(
            user_id="u",
            credits_remaining=0,
            credits_total=10,
            plan_tier=PlanTier.FREE,
            last_reset=NOW,
            next_reset=NOW + timedelta(days=1),
        )

        assert info.credits_remaining == 0

    @pytest.mark.parametrize("remaining,total", [(-1, 10), (11, 10), (0, 0)])
    def test_invalid_balances_rejected(self, remaining: int, total: int) -> None:
        with pytest.raises(ValueError):
            CreditAccountData(
                user_id="u",
                credits_remaining=remaining,
                credits_total=total,
                plan_tier=PlanTier.FREE,
                last_reset=NOW,
                next_reset=NOW + timedelta(days=1),
            )

    def test_snapshot_is_frozen(self) -> None:
        info = CreditAccountData(
            user_id="u",
            credits_remaining=1,
            credits_total=10,
            plan_tier=PlanTier.FREE,
            last_reset=NOW,
            next_reset=NOW + timedelta(days=1),
        )

        with pytest.raises(AttributeError):
            info.credits_remaining = 5  # type: ignore[misc]


class TestDeductionResult:
    """Tests for DeductionResult.raise_for_error."""

    def test_success_does_not_raise(self) -> None:
        DeductionResult(success=True, credits_remaining=9).raise_for_error()

    def test_insufficient_credits(self) -> None:
        result = DeductionResult(
            success=False,
            credits_remaining=0,
            error=ErrorCode.INSUFFICIENT_CREDITS,
            credits_charged=1,
        )

        with pytest.raises(InsufficientCreditsError) as exc_info:
            result.raise_for_error()

        assert exc_info.value.remaining == 0
        assert exc_info.value.required == 1
        assert exc_info.value.code == ErrorCode.INSUFFICIENT_CREDITS

    def test_database_error(self) -> None:
        result = DeductionResult(success=False, error=ErrorCode.DATABASE_ERROR, message="down")

        with pytest.raises(DatabaseError, match="down"):
            result.raise_for_error()

    def test_unexpected_error(self) -> None:
        result = DeductionResult(success=False, error=ErrorCode.EXCEPTION)

        with pytest.raises(UnexpectedLedgerError):
            result.raise_for_error()

    def test_missing_account(self) -> None:
        result = DeductionResult(success=False, error=ErrorCode.ACCOUNT_NOT_FOUND)

        with pytest.raises(AccountNotFoundError):
            result.raise_for_error()

    def test_all_errors_are_quota_errors(self) -> None:
        for code in ErrorCode:
            with pytest.raises(QuotaError):
                DeductionResult(success=False, error=code).raise_for_error()


class TestApiKeyEntry:
    """Tests for ApiKeyEntry availability."""

    def test_prefix_is_first_eight_chars(self) -> None:
        entry = ApiKeyEntry(
            key="r8_abcdefghijkl",
            service=KeyService.REPLICATE,
            daily_limit=1,
            last_reset=date.today(),
        )

        assert entry.prefix == "r8_abcde"

    def test_availability(self) -> None:
        entry = ApiKeyEntry(
            key="k", service=KeyService.REPLICATE, daily_limit=2, last_reset=date.today()
        )
        assert entry.is_available is True

        entry.daily_usage = 2
        assert entry.is_available is False

        entry.daily_usage = 0
        entry.is_active = False
        assert entry.is_available is False


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_codes(self) -> None:
        assert InsufficientCreditsError(0, 1).code == ErrorCode.INSUFFICIENT_CREDITS
        assert NoKeysAvailableError("openai").code == ErrorCode.NO_KEYS_AVAILABLE
        assert UnknownServiceError("openai").code == ErrorCode.NO_KEYS_AVAILABLE
        assert DatabaseError("x").code == ErrorCode.DATABASE_ERROR
        assert AccountNotFoundError("u").code == ErrorCode.ACCOUNT_NOT_FOUND
        assert UnexpectedLedgerError("x").code == ErrorCode.EXCEPTION

    def test_messages(self) -> None:
        assert str(InsufficientCreditsError(0, 1)) == (
            "Insufficient credits. Remaining: 0, Required: 1"
        )
        assert "openai" in str(NoKeysAvailableError("openai"))
