"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class PlanTier(str, Enum):
    """Subscription tier enumeration."""

    FREE = "free"
    PRO = "pro"
    ELITE = "elite"


class GenerationType(str, Enum):
    """Chargeable AI generation types."""

    TRY_ON = "try-on"
    OUTFIT_SUGGESTION = "outfit-suggestion"
    STYLE_ANALYSIS = "style-analysis"


class KeyService(str, Enum):
    """External vendors with pooled API keys."""

    REPLICATE = "replicate"
    OPENAI = "openai"
    STABILITY = "stability"
    GENERIC = "generic"


class KeySelectionStrategy(str, Enum):
    """How a key is picked from a pool."""

    ROUND_ROBIN = "round_robin"
    RANDOM = "random"


class RateLimitedFeature(str, Enum):
    """Features with independent rate limiter pools."""

    CHAT = "chat"
    TRY_ON = "try-on"


class ErrorCode(str, Enum):
    """Closed set of quota failure kinds."""

    INSUFFICIENT_CREDITS = "insufficient_credits"
    NO_KEYS_AVAILABLE = "no_keys_available"
    ACCOUNT_NOT_FOUND = "account_not_found"
    DATABASE_ERROR = "database_error"
    EXCEPTION = "exception"


# ============================================================================
# Credit Models
# ============================================================================


class CreditInfoResponse(BaseModel):
    """GET /v1/credits response."""

    user_id: str
    credits_remaining: int
    credits_total: int
    plan_tier: PlanTier
    last_reset: str
    next_reset: str
    display: str
    time_until_reset: str
    can_upgrade: bool


class DeductCreditRequest(BaseModel):
    """POST /v1/credits/deduct and admin refund request body."""

    generation_type: GenerationType = GenerationType.TRY_ON


class DeductCreditResponse(BaseModel):
    """POST /v1/credits/deduct response."""

    success: bool
    credits_remaining: int | None = None
    plan_tier: PlanTier | None = None
    error: ErrorCode | None = None
    message: str | None = None


class UpdatePlanRequest(BaseModel):
    """Admin plan change request body."""

    plan_tier: PlanTier


class CreditStatsResponse(BaseModel):
    """GET /v1/credits/stats response."""

    days: int
    total_credits_used: int
    total_generations: int
    generations_by_type: dict[str, int]
    daily_average: float


class RecommendedTierResponse(BaseModel):
    """GET /v1/credits/recommended-tier response."""

    current_tier: PlanTier
    recommended_tier: PlanTier


class PlanFeaturesResponse(BaseModel):
    """One entry of GET /v1/plans."""

    tier: PlanTier
    name: str
    daily_credits: int
    price: str
    features: list[str]


# ============================================================================
# Generation History Models
# ============================================================================


class RecordGenerationRequest(BaseModel):
    """POST /v1/generations request body."""

    generation_type: GenerationType
    input_data: dict[str, Any] = Field(default_factory=dict)
    result_url: str | None = Field(None, max_length=2048)
    processing_time_ms: int | None = Field(None, ge=0)


class RecordGenerationResponse(BaseModel):
    """POST /v1/generations response."""

    recorded: bool
    credits_used: int


class GenerationItem(BaseModel):
    """Single generation history entry."""

    generation_id: str
    generation_type: GenerationType
    result_url: str | None
    credits_used: int
    processing_time_ms: int | None
    created_at: str


class GenerationListResponse(BaseModel):
    """GET /v1/generations response."""

    generations: list[GenerationItem]
    total_count: int


# ============================================================================
# Rate Limit Models
# ============================================================================


class RateLimitResponse(BaseModel):
    """POST /v1/rate-limit/{feature}/check response."""

    feature: RateLimitedFeature
    allowed: bool
    current_requests: int
    max_requests: int
    retry_after_ms: int


# ============================================================================
# API Key Pool Models
# ============================================================================


class ServiceStatsResponse(BaseModel):
    """Aggregate usage for one key pool."""

    service: KeyService
    total_keys: int
    active_keys: int
    total_usage: int
    total_limit: int
    utilization_rate: float


class AllServiceStatsResponse(BaseModel):
    """GET /v1/admin/api-keys/stats response."""

    services: list[ServiceStatsResponse]


class KeyToggleRequest(BaseModel):
    """POST /v1/admin/api-keys/{service}/deactivate|reactivate request body."""

    key_prefix: str = Field(..., min_length=4, max_length=64)


class KeyToggleResponse(BaseModel):
    """Result of a manual key override."""

    service: KeyService
    key_prefix: str
    matched: bool
    is_active: bool


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    version: str
    key_pools: int
