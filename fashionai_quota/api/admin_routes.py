"""
Admin API Routes - API key pool observability, manual overrides and
server-side credit adjustments (refunds after vendor failures, plan changes).

All endpoints require the X-Admin-Token header.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from fashionai_quota.api.dependencies import (
    get_key_manager,
    get_ledger,
    get_response_cache,
    require_admin,
)
from fashionai_quota.api.routes import _credit_info_response, _raise_for_result
from fashionai_quota.models.api import (
    AllServiceStatsResponse,
    CreditInfoResponse,
    DeductCreditRequest,
    DeductCreditResponse,
    KeyService,
    KeyToggleRequest,
    KeyToggleResponse,
    ServiceStatsResponse,
    UpdatePlanRequest,
)
from fashionai_quota.models.domain import ServiceStats
from fashionai_quota.services.api_keys import ApiKeyManager
from fashionai_quota.services.cache import TTLCache
from fashionai_quota.services.credits import CreditLedger

router = APIRouter(prefix="/v1/admin", dependencies=[Depends(require_admin)])


def _stats_response(stats: ServiceStats) -> ServiceStatsResponse:
    return ServiceStatsResponse(
        service=stats.service,
        total_keys=stats.total_keys,
        active_keys=stats.active_keys,
        total_usage=stats.total_usage,
        total_limit=stats.total_limit,
        utilization_rate=round(stats.utilization_rate, 2),
    )


def _require_pool(manager: ApiKeyManager, service: KeyService) -> ServiceStats:
    stats = manager.get_service_stats(service)
    if stats is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No API keys registered for service: {service.value}",
        )
    return stats


@router.get("/api-keys/stats", response_model=AllServiceStatsResponse)
async def get_all_key_stats(
    manager: ApiKeyManager = Depends(get_key_manager),
) -> AllServiceStatsResponse:
    """Usage for every registered key pool."""
    return AllServiceStatsResponse(
        services=[_stats_response(stats) for stats in manager.get_all_stats()]
    )


@router.get("/api-keys/{service}/stats", response_model=ServiceStatsResponse)
async def get_key_stats(
    service: KeyService,
    manager: ApiKeyManager = Depends(get_key_manager),
) -> ServiceStatsResponse:
    """Usage for one key pool."""
    return _stats_response(_require_pool(manager, service))


@router.post("/api-keys/{service}/deactivate", response_model=KeyToggleResponse)
async def deactivate_key(
    service: KeyService,
    request: KeyToggleRequest,
    manager: ApiKeyManager = Depends(get_key_manager),
) -> KeyToggleResponse:
    """Take a revoked or vendor-suspended key out of rotation."""
    _require_pool(manager, service)
    matched = manager.mark_key_inactive(service, request.key_prefix)
    if not matched:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No key matches that prefix",
        )
    return KeyToggleResponse(
        service=service, key_prefix=request.key_prefix, matched=True, is_active=False
    )


@router.post("/api-keys/{service}/reactivate", response_model=KeyToggleResponse)
async def reactivate_key(
    service: KeyService,
    request: KeyToggleRequest,
    manager: ApiKeyManager = Depends(get_key_manager),
) -> KeyToggleResponse:
    """Put a previously deactivated key back into rotation."""
    _require_pool(manager, service)
    matched = manager.reactivate_key(service, request.key_prefix)
    if not matched:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No key matches that prefix",
        )
    return KeyToggleResponse(
        service=service, key_prefix=request.key_prefix, matched=True, is_active=True
    )


@router.post("/api-keys/{service}/reset", response_model=ServiceStatsResponse)
async def reset_keys(
    service: KeyService,
    manager: ApiKeyManager = Depends(get_key_manager),
) -> ServiceStatsResponse:
    """Zero today's usage for every key of a service."""
    _require_pool(manager, service)
    manager.reset_service(service)
    return _stats_response(_require_pool(manager, service))


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cache(cache: TTLCache = Depends(get_response_cache)) -> None:
    """Drop every cached AI response."""
    cache.clear()


@router.post("/credits/{user_id}/refund", response_model=DeductCreditResponse)
async def refund_credit(
    user_id: str,
    request: DeductCreditRequest,
    ledger: CreditLedger = Depends(get_ledger),
) -> DeductCreditResponse:
    """
    Return the cost of a generation whose AI call failed outright.

    Called by the generation backend, never by end users. 404 when the
    user has no credit account.
    """
    result = await ledger.refund_credit(user_id, request.generation_type)
    _raise_for_result(result)
    return DeductCreditResponse(
        success=True,
        credits_remaining=result.credits_remaining,
        plan_tier=result.plan_tier,
        message=result.message,
    )


@router.put("/credits/{user_id}/plan", response_model=CreditInfoResponse)
async def update_plan(
    user_id: str,
    request: UpdatePlanRequest,
    ledger: CreditLedger = Depends(get_ledger),
) -> CreditInfoResponse:
    """Switch a user's plan tier and refill credits (after a confirmed purchase)."""
    if not await ledger.update_user_plan_tier(user_id, request.plan_tier):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to update plan tier",
        )
    info = await ledger.get_user_credits(user_id)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Credit ledger unavailable",
        )
    return _credit_info_response(info)
