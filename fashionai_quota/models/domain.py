"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - Snapshots and results are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

from fashionai_quota.exceptions import (
    AccountNotFoundError,
    DatabaseError,
    InsufficientCreditsError,
    NoKeysAvailableError,
    QuotaError,
    UnexpectedLedgerError,
)
from fashionai_quota.models.api import ErrorCode, GenerationType, KeyService, PlanTier


@dataclass(frozen=True)
class CreditAccountData:
    """Immutable credit account snapshot."""

    user_id: str
    credits_remaining: int
    credits_total: int
    plan_tier: PlanTier
    last_reset: datetime
    next_reset: datetime

    def __post_init__(self) -> None:
        """Validate credit invariants."""
        if self.credits_total <= 0:
            raise ValueError(f"credits_total must be positive: {self.credits_total}")
        if not 0 <= self.credits_remaining <= self.credits_total:
            raise ValueError(
                f"credits_remaining out of range: {self.credits_remaining}/{self.credits_total}"
            )


@dataclass(frozen=True)
class DeductionResult:
    """Outcome of a deduct or refund - a tagged result, never an exception."""

    success: bool
    credits_remaining: int | None = None
    plan_tier: PlanTier | None = None
    error: ErrorCode | None = None
    message: str | None = None
    credits_charged: int = 0

    def raise_for_error(self) -> None:
        """Raise the QuotaError matching this result's error code, if any."""
        if self.success:
            return
        if self.error == ErrorCode.INSUFFICIENT_CREDITS:
            raise InsufficientCreditsError(
                remaining=self.credits_remaining or 0, required=self.credits_charged
            )
        if self.error == ErrorCode.ACCOUNT_NOT_FOUND:
            raise AccountNotFoundError(self.message or "unknown")
        if self.error == ErrorCode.DATABASE_ERROR:
            raise DatabaseError(self.message or "credit ledger unavailable")
        if self.error == ErrorCode.EXCEPTION:
            raise UnexpectedLedgerError(self.message or "unexpected ledger failure")
        if self.error == ErrorCode.NO_KEYS_AVAILABLE:
            raise NoKeysAvailableError(self.message or "unknown")
        raise QuotaError(self.message or "quota operation failed")


@dataclass(frozen=True)
class GenerationRecordData:
    """Immutable generation history entry."""

    generation_id: UUID
    user_id: str
    generation_type: GenerationType
    input_data: dict
    result_url: str | None
    credits_used: int
    processing_time_ms: int | None
    created_at: datetime


@dataclass(frozen=True)
class CreditStats:
    """Usage aggregated over a trailing window of days."""

    days: int
    total_credits_used: int
    total_generations: int
    generations_by_type: dict[str, int]
    daily_average: float


@dataclass(frozen=True)
class PlanFeatures:
    """Display metadata for a plan tier."""

    name: str
    daily_credits: int
    price: str
    features: tuple[str, ...]


@dataclass
class ApiKeyEntry:
    """One pooled credential; mutated in place by the key manager."""

    key: str
    service: KeyService
    daily_limit: int
    last_reset: date
    daily_usage: int = 0
    is_active: bool = True
    last_used_at: datetime | None = field(default=None)

    @property
    def prefix(self) -> str:
        """Loggable key prefix."""
        return self.key[:8]

    @property
    def is_available(self) -> bool:
        """Active and under its daily limit."""
        return self.is_active and self.daily_usage < self.daily_limit


@dataclass(frozen=True)
class ServiceStats:
    """Aggregate usage for one key pool."""

    service: KeyService
    total_keys: int
    active_keys: int
    total_usage: int
    total_limit: int
    utilization_rate: float
