"""
Credit Ledger - per-user daily credit quotas tied to a plan tier.

Every write runs in one transaction under a row lock (SELECT FOR UPDATE),
so concurrent requests for the same user serialize at the database:
1. Lock (or create) the account row
2. Apply the daily reset if it is due
3. Check and mutate
4. Commit

Storage failures never propagate; they come back as tagged results.
"""

from collections import Counter
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fashionai_quota.config import Settings
from fashionai_quota.db.models import GenerationHistory, UserCredits
from fashionai_quota.exceptions import DatabaseError
from fashionai_quota.models.api import ErrorCode, GenerationType, PlanTier
from fashionai_quota.models.domain import (
    CreditAccountData,
    CreditStats,
    DeductionResult,
    GenerationRecordData,
    PlanFeatures,
)
from fashionai_quota.observability import get_logger, get_tracer, metrics
from fashionai_quota.observability.tracing import ledger_span

logger = get_logger(__name__)
tracer = get_tracer(__name__)

PLAN_LIMITS: dict[PlanTier, int] = {
    PlanTier.FREE: 10,
    PlanTier.PRO: 100,
    PlanTier.ELITE: 300,
}

PLAN_FEATURES: dict[PlanTier, PlanFeatures] = {
    PlanTier.FREE: PlanFeatures(
        name="Free",
        daily_credits=10,
        price="$0",
        features=(
            "10 AI generations per day",
            "Basic virtual try-on",
            "Wardrobe recommendations (3 per request)",
            "Standard processing speed",
            "Community support",
        ),
    ),
    PlanTier.PRO: PlanFeatures(
        name="Pro",
        daily_credits=100,
        price="$19/month",
        features=(
            "100 AI generations per day",
            "Advanced virtual try-on",
            "Priority processing",
            "Outfit suggestions",
            "Email support",
            "No watermarks",
        ),
    ),
    PlanTier.ELITE: PlanFeatures(
        name="Elite",
        daily_credits=300,
        price="$49/month",
        features=(
            "300 AI generations per day",
            "Premium virtual try-on",
            "Instant processing",
            "Unlimited outfit suggestions",
            "Priority 24/7 support",
            "API access",
            "Advanced analytics",
            "Custom branding",
        ),
    ),
}

CREDIT_COSTS: dict[str, int] = {
    "try-on": 1,
    "wardrobe-try-on": 1,
    "outfit-suggestion": 0,
    "style-analysis": 1,
    "batch-try-on": 3,
}
DEFAULT_CREDIT_COST = 1

# Average daily credits (over 7 days) at which a tier is recommended
ELITE_USAGE_THRESHOLD = 100
PRO_USAGE_THRESHOLD = 20
RECOMMENDATION_WINDOW_DAYS = 7

DEFAULT_RESET_INTERVAL = timedelta(hours=24)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def plan_limits_from_settings(settings: Settings) -> dict[PlanTier, int]:
    """Daily credits per tier as configured."""
    return {
        PlanTier.FREE: settings.plan_free_credits,
        PlanTier.PRO: settings.plan_pro_credits,
        PlanTier.ELITE: settings.plan_elite_credits,
    }


def get_credit_cost(operation: GenerationType | str) -> int:
    """Credits charged for an operation; unknown operations cost 1."""
    key = operation.value if isinstance(operation, GenerationType) else operation
    return CREDIT_COSTS.get(key, DEFAULT_CREDIT_COST)


def _should_reset(next_reset: datetime, now: datetime) -> bool:
    """Check if the daily reset is due."""
    return now >= next_reset


def _advance_reset_window(
    next_reset: datetime, now: datetime, interval: timedelta
) -> tuple[datetime, datetime]:
    """
    Move the reset window forward by whole intervals until it covers now.

    Returns (last_reset, next_reset). A single elapsed day advances both by
    exactly one interval; after a multi-day gap the window lands on the
    interval containing now, so the next reset is always in the future.
    """
    elapsed_intervals = (now - next_reset) // interval + 1
    new_last_reset = next_reset + interval * (elapsed_intervals - 1)
    return new_last_reset, new_last_reset + interval


def format_credit_display(info: CreditAccountData | None) -> str:
    """Render remaining/total, e.g. "7/10"."""
    if info is None:
        return "N/A"
    return f"{info.credits_remaining}/{info.credits_total}"


def get_time_until_reset(info: CreditAccountData | None, now: datetime | None = None) -> str:
    """Render time until the next reset as "Xh Ym"."""
    if info is None:
        return "Unknown"

    diff = info.next_reset - (now or _utc_now())
    if diff <= timedelta(0):
        return "Resetting now..."

    total_minutes = int(diff.total_seconds()) // 60
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


def can_upgrade(current_tier: PlanTier) -> bool:
    """Every tier below elite can upgrade."""
    return current_tier != PlanTier.ELITE


def recommend_tier(daily_average: float) -> PlanTier:
    """Classify average daily credit usage into a tier."""
    if daily_average >= ELITE_USAGE_THRESHOLD:
        return PlanTier.ELITE
    if daily_average >= PRO_USAGE_THRESHOLD:
        return PlanTier.PRO
    return PlanTier.FREE


class CreditLedger:
    """
    Credit ledger bound to one database session.

    Usage:
        ledger = CreditLedger(session)
        result = await ledger.deduct_credit(user_id, GenerationType.TRY_ON)
        if not result.success:
            ...  # result.error is an ErrorCode
    """

    def __init__(
        self,
        session: AsyncSession,
        plan_limits: Mapping[PlanTier, int] | None = None,
        reset_interval: timedelta = DEFAULT_RESET_INTERVAL,
    ) -> None:
        """Initialize the ledger with a database session."""
        self.session = session
        self.plan_limits = dict(plan_limits or PLAN_LIMITS)
        self.reset_interval = reset_interval

    # ========================================================================
    # Account state
    # ========================================================================

    async def get_user_credits(self, user_id: str) -> CreditAccountData | None:
        """
        Current credit snapshot for a user (upsert).

        Creates a free-tier account with full credits on first access and
        applies a due daily reset before returning. Returns None when the
        database is unavailable.
        """
        now = _utc_now()
        try:
            account = await self._lock_or_create_account(user_id, now)
            self._apply_reset_if_due(account, now)
            await self.session.flush()
            await self.session.commit()
            return self._account_to_domain(account)
        except (SQLAlchemyError, DatabaseError) as e:
            await self._rollback_after_error("get_user_credits", user_id, e)
            return None

    async def has_credits(self, user_id: str) -> bool:
        """True if the user has at least one credit left today."""
        info = await self.get_user_credits(user_id)
        return info.credits_remaining > 0 if info else False

    async def deduct_credit(
        self,
        user_id: str,
        generation_type: GenerationType = GenerationType.TRY_ON,
    ) -> DeductionResult:
        """
        Atomically check and deduct the cost of a generation.

        The daily reset is applied first, so the first request after the
        reset time always sees a full quota. Fails with insufficient_credits,
        without touching the balance, when nothing is left or the balance
        cannot cover the cost.
        """
        cost = get_credit_cost(generation_type)
        now = _utc_now()

        with ledger_span(tracer, "deduct", generation_type=generation_type.value, cost=cost):
            try:
                account = await self._lock_or_create_account(user_id, now)
                self._apply_reset_if_due(account, now)

                remaining = account.credits_remaining
                tier = PlanTier(account.plan_tier)

                if remaining <= 0 or remaining < cost:
                    await self.session.flush()
                    await self.session.commit()
                    metrics.record_deduction(
                        generation_type.value, False, ErrorCode.INSUFFICIENT_CREDITS.value
                    )
                    logger.info(
                        "credit_deduction_denied",
                        user_id=user_id,
                        generation_type=generation_type.value,
                        credits_remaining=remaining,
                        cost=cost,
                    )
                    return DeductionResult(
                        success=False,
                        credits_remaining=remaining,
                        plan_tier=tier,
                        error=ErrorCode.INSUFFICIENT_CREDITS,
                        message=(
                            "Daily credit limit reached. Credits reset in "
                            f"{get_time_until_reset(self._account_to_domain(account), now)}."
                        ),
                        credits_charged=cost,
                    )

                account.credits_remaining = remaining - cost
                await self.session.flush()
                await self.session.commit()

            except (SQLAlchemyError, DatabaseError) as e:
                await self._rollback_after_error("deduct_credit", user_id, e)
                metrics.record_deduction(
                    generation_type.value, False, ErrorCode.DATABASE_ERROR.value
                )
                return DeductionResult(
                    success=False,
                    error=ErrorCode.DATABASE_ERROR,
                    message="Failed to deduct credit. Please try again.",
                )
            except Exception as e:
                await self.session.rollback()
                logger.exception(
                    "credit_deduction_failed", user_id=user_id, error_type=type(e).__name__
                )
                metrics.record_error(type(e).__name__, "deduct_credit")
                metrics.record_deduction(generation_type.value, False, ErrorCode.EXCEPTION.value)
                return DeductionResult(
                    success=False,
                    error=ErrorCode.EXCEPTION,
                    message="An unexpected error occurred.",
                )

        metrics.record_deduction(generation_type.value, True)
        logger.info(
            "credit_deducted",
            user_id=user_id,
            generation_type=generation_type.value,
            cost=cost,
            credits_remaining=account.credits_remaining,
        )
        return DeductionResult(
            success=True,
            credits_remaining=account.credits_remaining,
            plan_tier=tier,
            credits_charged=cost,
        )

    async def refund_credit(
        self,
        user_id: str,
        generation_type: GenerationType = GenerationType.TRY_ON,
    ) -> DeductionResult:
        """
        Give back the cost of a generation whose AI call failed outright.

        Runs under the same row lock as deduct_credit and never raises the
        balance above credits_total (a reset between deduct and refund
        already restored the quota).
        """
        cost = get_credit_cost(generation_type)
        now = _utc_now()

        with ledger_span(tracer, "refund", generation_type=generation_type.value, cost=cost):
            try:
                account = await self._lock_account(user_id)
                if account is None:
                    metrics.record_refund(generation_type.value, False)
                    return DeductionResult(
                        success=False,
                        error=ErrorCode.ACCOUNT_NOT_FOUND,
                        message="No credit account to refund.",
                    )

                self._apply_reset_if_due(account, now)
                refunded = min(cost, account.credits_total - account.credits_remaining)
                account.credits_remaining += refunded
                await self.session.flush()
                await self.session.commit()
            except (SQLAlchemyError, DatabaseError) as e:
                await self._rollback_after_error("refund_credit", user_id, e)
                metrics.record_refund(generation_type.value, False)
                return DeductionResult(
                    success=False,
                    error=ErrorCode.DATABASE_ERROR,
                    message="Failed to refund credit.",
                )
            except Exception as e:
                await self.session.rollback()
                logger.exception(
                    "credit_refund_failed", user_id=user_id, error_type=type(e).__name__
                )
                metrics.record_error(type(e).__name__, "refund_credit")
                metrics.record_refund(generation_type.value, False)
                return DeductionResult(
                    success=False,
                    error=ErrorCode.EXCEPTION,
                    message="An unexpected error occurred.",
                )

        metrics.record_refund(generation_type.value, True)
        logger.info(
            "credit_refunded",
            user_id=user_id,
            generation_type=generation_type.value,
            refunded=refunded,
            credits_remaining=account.credits_remaining,
        )
        return DeductionResult(
            success=True,
            credits_remaining=account.credits_remaining,
            plan_tier=PlanTier(account.plan_tier),
            message=f"Refunded {refunded} credit(s).",
        )

    async def get_user_plan_tier(self, user_id: str) -> PlanTier:
        """The user's tier; free when unknown or unavailable."""
        try:
            account = await self._find_account(user_id)
        except SQLAlchemyError as e:
            logger.error("plan_tier_lookup_failed", user_id=user_id, error=str(e))
            return PlanTier.FREE
        if account is None:
            return PlanTier.FREE
        return PlanTier(account.plan_tier)

    async def update_user_plan_tier(self, user_id: str, new_tier: PlanTier) -> bool:
        """Switch tier and refill credits to the new tier's allotment."""
        now = _utc_now()
        try:
            account = await self._lock_or_create_account(user_id, now)
            old_tier = account.plan_tier
            limit = self.plan_limits[new_tier]
            account.plan_tier = new_tier.value
            account.credits_total = limit
            account.credits_remaining = limit
            await self.session.flush()
            await self.session.commit()
        except (SQLAlchemyError, DatabaseError) as e:
            await self._rollback_after_error("update_user_plan_tier", user_id, e)
            return False

        logger.info(
            "plan_tier_updated",
            user_id=user_id,
            old_tier=old_tier,
            new_tier=new_tier.value,
            credits_total=limit,
        )
        return True

    # ========================================================================
    # Generation history
    # ========================================================================

    async def record_generation(
        self,
        user_id: str,
        generation_type: GenerationType,
        input_data: dict[str, Any],
        result_url: str | None = None,
        processing_time_ms: int | None = None,
    ) -> bool:
        """
        Append a generation record for analytics.

        Recorded for every completed attempt, whether or not a credit was
        deducted; it plays no part in enforcement.
        """
        record = GenerationHistory(
            user_id=user_id,
            generation_type=generation_type.value,
            input_data=input_data,
            result_url=result_url,
            credits_used=get_credit_cost(generation_type),
            processing_time_ms=processing_time_ms,
        )
        self.session.add(record)

        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._rollback_after_error("record_generation", user_id, e)
            return False

        return True

    async def get_generation_history(
        self, user_id: str, limit: int = 50
    ) -> list[GenerationRecordData]:
        """Most recent generations first."""
        stmt = (
            select(GenerationHistory)
            .where(GenerationHistory.user_id == user_id)
            .order_by(GenerationHistory.created_at.desc())
            .limit(limit)
        )
        try:
            result = await self.session.execute(stmt)
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("generation_history_failed", user_id=user_id, error=str(e))
            return []

        return [
            GenerationRecordData(
                generation_id=row.id,
                user_id=row.user_id,
                generation_type=GenerationType(row.generation_type),
                input_data=row.input_data,
                result_url=row.result_url,
                credits_used=row.credits_used,
                processing_time_ms=row.processing_time_ms,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def get_credit_stats(self, user_id: str, days: int = 30) -> CreditStats | None:
        """Aggregate generations over the trailing window; pure read."""
        if days <= 0:
            raise ValueError(f"days must be positive: {days}")

        start = _utc_now() - timedelta(days=days)
        stmt = (
            select(GenerationHistory.generation_type, GenerationHistory.credits_used)
            .where(
                GenerationHistory.user_id == user_id,
                GenerationHistory.created_at >= start,
            )
            .order_by(GenerationHistory.created_at.asc())
        )
        try:
            result = await self.session.execute(stmt)
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error("credit_stats_failed", user_id=user_id, error=str(e))
            return None

        total_credits_used = sum(row.credits_used for row in rows)
        by_type = Counter(row.generation_type for row in rows)

        return CreditStats(
            days=days,
            total_credits_used=total_credits_used,
            total_generations=len(rows),
            generations_by_type=dict(by_type),
            daily_average=total_credits_used / days,
        )

    async def get_recommended_tier(self, user_id: str) -> PlanTier:
        """Tier suggested by the last week's average daily usage."""
        stats = await self.get_credit_stats(user_id, RECOMMENDATION_WINDOW_DAYS)
        if stats is None:
            return PlanTier.FREE
        return recommend_tier(stats.daily_average)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_account(self, user_id: str) -> UserCredits | None:
        """Find account without locking."""
        stmt = select(UserCredits).where(UserCredits.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_account(self, user_id: str) -> UserCredits | None:
        """Lock account row for update (SELECT FOR UPDATE)."""
        stmt = select(UserCredits).where(UserCredits.user_id == user_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_or_create_account(self, user_id: str, now: datetime) -> UserCredits:
        """Lock the account row, inserting a full free-tier account if missing."""
        account = await self._lock_account(user_id)
        if account is not None:
            return account

        limit = self.plan_limits[PlanTier.FREE]
        new_account = UserCredits(
            user_id=user_id,
            credits_remaining=limit,
            credits_total=limit,
            plan_tier=PlanTier.FREE.value,
            last_reset=now,
            next_reset=now + self.reset_interval,
        )
        self.session.add(new_account)

        try:
            await self.session.flush()
        except IntegrityError:
            # Race condition - account created by another request
            await self.session.rollback()
            account = await self._lock_account(user_id)
            if account is None:
                raise DatabaseError(f"Credit account creation failed for {user_id}")
            return account

        logger.info("credit_account_created", user_id=user_id, credits_total=limit)
        return new_account

    def _apply_reset_if_due(self, account: UserCredits, now: datetime) -> bool:
        """Refill to the tier allotment and roll the reset window forward."""
        if not _should_reset(account.next_reset, now):
            return False

        limit = self.plan_limits[PlanTier(account.plan_tier)]
        account.credits_total = limit
        account.credits_remaining = limit
        account.last_reset, account.next_reset = _advance_reset_window(
            account.next_reset, now, self.reset_interval
        )
        metrics.credit_resets_total.inc()
        logger.info(
            "credits_reset",
            user_id=account.user_id,
            credits_total=limit,
            next_reset=account.next_reset.isoformat(),
        )
        return True

    async def _rollback_after_error(
        self, operation: str, user_id: str, error: Exception
    ) -> None:
        await self.session.rollback()
        metrics.record_error(type(error).__name__, operation)
        logger.error(
            f"{operation}_database_error",
            user_id=user_id,
            error=str(error),
            error_type=type(error).__name__,
        )

    def _account_to_domain(self, account: UserCredits) -> CreditAccountData:
        """Convert ORM account to domain model."""
        return CreditAccountData(
            user_id=account.user_id,
            credits_remaining=account.credits_remaining,
            credits_total=account.credits_total,
            plan_tier=PlanTier(account.plan_tier),
            last_reset=account.last_reset,
            next_reset=account.next_reset,
        )
