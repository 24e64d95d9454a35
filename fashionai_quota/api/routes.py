"""
API Routes - credit ledger, generation history and rate limit endpoints.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

import math

from fastapi import APIRouter, Depends, HTTPException, Query, status

from fashionai_quota.api.dependencies import (
    get_current_user_id,
    get_ledger,
    get_rate_limiters,
)
from fashionai_quota.exceptions import (
    AccountNotFoundError,
    DatabaseError,
    InsufficientCreditsError,
    QuotaError,
)
from fashionai_quota.models.api import (
    CreditInfoResponse,
    CreditStatsResponse,
    DeductCreditRequest,
    DeductCreditResponse,
    GenerationItem,
    GenerationListResponse,
    PlanFeaturesResponse,
    RateLimitedFeature,
    RateLimitResponse,
    RecommendedTierResponse,
    RecordGenerationRequest,
    RecordGenerationResponse,
)
from fashionai_quota.models.domain import CreditAccountData, DeductionResult
from fashionai_quota.services.credits import (
    PLAN_FEATURES,
    CreditLedger,
    can_upgrade,
    format_credit_display,
    get_credit_cost,
    get_time_until_reset,
)
from fashionai_quota.services.rate_limiter import RateLimiterPool

router = APIRouter()

# Limiter pools above this many clients drop idle entries
_MAX_TRACKED_CLIENTS = 10_000


def _credit_info_response(info: CreditAccountData) -> CreditInfoResponse:
    return CreditInfoResponse(
        user_id=info.user_id,
        credits_remaining=info.credits_remaining,
        credits_total=info.credits_total,
        plan_tier=info.plan_tier,
        last_reset=info.last_reset.isoformat(),
        next_reset=info.next_reset.isoformat(),
        display=format_credit_display(info),
        time_until_reset=get_time_until_reset(info),
        can_upgrade=can_upgrade(info.plan_tier),
    )


def _raise_for_result(result: DeductionResult) -> None:
    """Translate a failed ledger result into an HTTP error."""
    try:
        result.raise_for_error()
    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=result.message or str(exc),
        ) from exc
    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=result.message or str(exc),
        ) from exc
    except DatabaseError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=result.message or "Credit ledger unavailable",
        ) from exc
    except QuotaError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=result.message or str(exc),
        ) from exc


@router.get("/v1/credits", response_model=CreditInfoResponse)
async def get_credits(
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedger = Depends(get_ledger),
) -> CreditInfoResponse:
    """
    Current credit balance for the caller.

    Creates a free-tier account on first access.
    """
    info = await ledger.get_user_credits(user_id)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Credit ledger unavailable",
        )
    return _credit_info_response(info)


@router.post("/v1/credits/deduct", response_model=DeductCreditResponse)
async def deduct_credit(
    request: DeductCreditRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedger = Depends(get_ledger),
) -> DeductCreditResponse:
    """
    Deduct the cost of a generation before calling the AI vendor.

    402 when the daily quota is used up.
    """
    result = await ledger.deduct_credit(user_id, request.generation_type)
    _raise_for_result(result)
    return DeductCreditResponse(
        success=True,
        credits_remaining=result.credits_remaining,
        plan_tier=result.plan_tier,
    )


@router.get("/v1/credits/stats", response_model=CreditStatsResponse)
async def get_credit_stats(
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedger = Depends(get_ledger),
) -> CreditStatsResponse:
    """Usage over the trailing number of days."""
    stats = await ledger.get_credit_stats(user_id, days)
    if stats is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Credit ledger unavailable",
        )
    return CreditStatsResponse(
        days=stats.days,
        total_credits_used=stats.total_credits_used,
        total_generations=stats.total_generations,
        generations_by_type=stats.generations_by_type,
        daily_average=stats.daily_average,
    )


@router.get("/v1/credits/recommended-tier", response_model=RecommendedTierResponse)
async def get_recommended_tier(
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedger = Depends(get_ledger),
) -> RecommendedTierResponse:
    """Tier suggested by the last week's usage."""
    current = await ledger.get_user_plan_tier(user_id)
    recommended = await ledger.get_recommended_tier(user_id)
    return RecommendedTierResponse(current_tier=current, recommended_tier=recommended)


@router.get("/v1/plans", response_model=list[PlanFeaturesResponse])
async def list_plans() -> list[PlanFeaturesResponse]:
    """Plan tiers with their daily allotments and features."""
    return [
        PlanFeaturesResponse(
            tier=tier,
            name=plan.name,
            daily_credits=plan.daily_credits,
            price=plan.price,
            features=list(plan.features),
        )
        for tier, plan in PLAN_FEATURES.items()
    ]


@router.get("/v1/generations", response_model=GenerationListResponse)
async def list_generations(
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedger = Depends(get_ledger),
) -> GenerationListResponse:
    """Caller's generation history, newest first."""
    records = await ledger.get_generation_history(user_id, limit)
    items = [
        GenerationItem(
            generation_id=str(record.generation_id),
            generation_type=record.generation_type,
            result_url=record.result_url,
            credits_used=record.credits_used,
            processing_time_ms=record.processing_time_ms,
            created_at=record.created_at.isoformat(),
        )
        for record in records
    ]
    return GenerationListResponse(generations=items, total_count=len(items))


@router.post(
    "/v1/generations",
    response_model=RecordGenerationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_generation(
    request: RecordGenerationRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedger = Depends(get_ledger),
) -> RecordGenerationResponse:
    """Log a completed (or fallback) generation attempt."""
    recorded = await ledger.record_generation(
        user_id,
        request.generation_type,
        request.input_data,
        result_url=request.result_url,
        processing_time_ms=request.processing_time_ms,
    )
    if not recorded:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to record generation",
        )
    return RecordGenerationResponse(
        recorded=True, credits_used=get_credit_cost(request.generation_type)
    )


@router.post("/v1/rate-limit/{feature}/check", response_model=RateLimitResponse)
async def check_rate_limit(
    feature: RateLimitedFeature,
    user_id: str = Depends(get_current_user_id),
    rate_limiters: dict[RateLimitedFeature, RateLimiterPool] = Depends(get_rate_limiters),
) -> RateLimitResponse:
    """
    Admit or reject one request for a feature.

    429 with Retry-After when the caller's window is full.
    """
    pool = rate_limiters[feature]
    pool.prune_if_crowded(_MAX_TRACKED_CLIENTS)

    limiter = pool.for_client(user_id)
    if not limiter.can_make_request():
        retry_after_ms = limiter.get_time_until_next_request()
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limited, retry in {retry_after_ms} ms",
            headers={"Retry-After": str(max(1, math.ceil(retry_after_ms / 1000)))},
        )

    return RateLimitResponse(
        feature=feature,
        allowed=True,
        current_requests=limiter.get_current_request_count(),
        max_requests=limiter.max_requests,
        retry_after_ms=0,
    )
