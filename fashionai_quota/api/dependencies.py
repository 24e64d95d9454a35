"""
FastAPI Dependencies - shared quota components, ledger sessions and callers.

The in-memory components are built once in the application lifespan and
stored on app.state; handlers receive them through Depends.
"""

import secrets
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from fashionai_quota.config import Settings, settings
from fashionai_quota.db.session import get_db
from fashionai_quota.models.api import RateLimitedFeature
from fashionai_quota.observability import get_logger
from fashionai_quota.services.api_keys import ApiKeyManager
from fashionai_quota.services.cache import TTLCache
from fashionai_quota.services.credits import CreditLedger, plan_limits_from_settings
from fashionai_quota.services.rate_limiter import RateLimiterPool

logger = get_logger(__name__)


@dataclass
class QuotaComponents:
    """Process-wide in-memory quota state."""

    key_manager: ApiKeyManager
    response_cache: TTLCache
    rate_limiters: dict[RateLimitedFeature, RateLimiterPool]


def build_components(config: Settings) -> QuotaComponents:
    """Construct the shared components from configuration."""
    return QuotaComponents(
        key_manager=ApiKeyManager.from_settings(config),
        response_cache=TTLCache(default_ttl_ms=config.cache_default_ttl_ms),
        rate_limiters={
            RateLimitedFeature.CHAT: RateLimiterPool(
                feature=RateLimitedFeature.CHAT.value,
                max_requests=config.chat_rate_limit_requests,
                window_ms=config.chat_rate_limit_window_ms,
            ),
            RateLimitedFeature.TRY_ON: RateLimiterPool(
                feature=RateLimitedFeature.TRY_ON.value,
                max_requests=config.tryon_rate_limit_requests,
                window_ms=config.tryon_rate_limit_window_ms,
            ),
        },
    )


def get_components(request: Request) -> QuotaComponents:
    """Components attached to the running application."""
    components: QuotaComponents | None = getattr(request.app.state, "quota", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Quota components not initialized",
        )
    return components


def get_key_manager(components: QuotaComponents = Depends(get_components)) -> ApiKeyManager:
    return components.key_manager


def get_response_cache(components: QuotaComponents = Depends(get_components)) -> TTLCache:
    return components.response_cache


def get_rate_limiters(
    components: QuotaComponents = Depends(get_components),
) -> dict[RateLimitedFeature, RateLimiterPool]:
    return components.rate_limiters


async def get_ledger(db: AsyncSession = Depends(get_db)) -> CreditLedger:
    """Credit ledger bound to the request's database session."""
    return CreditLedger(
        db,
        plan_limits=plan_limits_from_settings(settings),
        reset_interval=timedelta(hours=settings.credit_reset_hours),
    )


async def get_current_user_id(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> str:
    """
    Caller's user id as set by the upstream auth layer.

    Raises:
        HTTPException 401 if the header is missing or blank
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header required",
        )
    return x_user_id.strip()


async def require_admin(
    x_admin_token: str | None = Header(None, alias="X-Admin-Token"),
) -> None:
    """
    Guard admin endpoints with the configured static token.

    Raises:
        HTTPException 503 if no admin token is configured
        HTTPException 401 if the token is missing or wrong
    """
    if not settings.admin_api_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin endpoints are disabled",
        )

    if x_admin_token is None or not secrets.compare_digest(
        x_admin_token, settings.admin_api_token
    ):
        logger.warning("admin_token_rejected", token_present=x_admin_token is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )
