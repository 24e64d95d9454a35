"""
API Key Pool Manager - round-robin and random distribution of vendor keys.

Each key has its own daily quota. The daily reset is reset-on-access: a key's
usage is zeroed the first time it is considered for selection on a new UTC
calendar day. There is no background timer; a key idle for several days
simply resets on its next selection attempt.

Counters live in process memory. Each worker keeps independent quotas.
"""

import random
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from fashionai_quota.config import Settings
from fashionai_quota.exceptions import NoKeysAvailableError, UnknownServiceError
from fashionai_quota.models.api import KeySelectionStrategy, KeyService
from fashionai_quota.models.domain import ApiKeyEntry, ServiceStats
from fashionai_quota.observability import get_logger, metrics

logger = get_logger(__name__)

DEFAULT_DAILY_LIMIT = 100


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class ApiKeyManager:
    """
    Per-service pools of API keys with daily usage limits.

    Usage:
        manager = ApiKeyManager.from_settings(settings)
        key = manager.get_next_key(KeyService.REPLICATE)
        if key is None:
            # every key exhausted today - surface "service busy"
            ...
    """

    def __init__(
        self,
        default_daily_limit: int = DEFAULT_DAILY_LIMIT,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.default_daily_limit = default_daily_limit
        self._clock = clock or _utc_now
        self._rng = rng or random.Random()
        self._pools: dict[KeyService, list[ApiKeyEntry]] = {}
        self._cursors: dict[KeyService, int] = {}

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: Callable[[], datetime] | None = None
    ) -> "ApiKeyManager":
        """Build pools from the comma-separated key lists in settings."""
        manager = cls(default_daily_limit=settings.api_key_daily_limit, clock=clock)
        for service_name, keys in settings.service_key_lists.items():
            if keys:
                manager.register_service(KeyService(service_name), keys)
        return manager

    def register_service(
        self, service: KeyService, keys: Iterable[str], daily_limit: int | None = None
    ) -> None:
        """Register (or replace) the key pool for a service."""
        limit = self.default_daily_limit if daily_limit is None else daily_limit
        if limit <= 0:
            raise ValueError(f"daily_limit must be positive: {limit}")

        today = self._clock().date()
        self._pools[service] = [
            ApiKeyEntry(key=key, service=service, daily_limit=limit, last_reset=today)
            for key in keys
        ]
        self._cursors[service] = 0

        logger.info(
            "api_key_pool_registered",
            service=service.value,
            key_count=len(self._pools[service]),
            daily_limit=limit,
        )

    def services(self) -> list[KeyService]:
        """Services with a registered pool."""
        return list(self._pools)

    # ========================================================================
    # Selection
    # ========================================================================

    def get_next_key(self, service: KeyService) -> str | None:
        """
        Round-robin selection starting at the service cursor.

        Scans each key at most once. Returns None when the service is unknown
        or every key is inactive or at its daily limit.
        """
        keys = self._pools.get(service)
        if not keys:
            logger.error("api_key_pool_missing", service=service.value)
            return None

        now = self._clock()
        start = self._cursors.get(service, 0)

        for attempt in range(len(keys)):
            index = (start + attempt) % len(keys)
            entry = keys[index]
            self._reset_if_new_day(entry, now)

            if entry.is_available:
                self._consume(entry, now)
                self._cursors[service] = (index + 1) % len(keys)
                metrics.record_key_selection(
                    service.value, KeySelectionStrategy.ROUND_ROBIN.value, True
                )
                return entry.key

        logger.error("api_key_pool_exhausted", service=service.value, key_count=len(keys))
        metrics.record_key_selection(service.value, KeySelectionStrategy.ROUND_ROBIN.value, False)
        return None

    def get_random_key(self, service: KeyService) -> str | None:
        """Uniform choice among available keys; the round-robin cursor is untouched."""
        keys = self._pools.get(service)
        if not keys:
            return None

        now = self._clock()
        for entry in keys:
            self._reset_if_new_day(entry, now)

        available = [entry for entry in keys if entry.is_available]
        if not available:
            logger.error("api_key_pool_exhausted", service=service.value, key_count=len(keys))
            metrics.record_key_selection(service.value, KeySelectionStrategy.RANDOM.value, False)
            return None

        entry = self._rng.choice(available)
        self._consume(entry, now)
        metrics.record_key_selection(service.value, KeySelectionStrategy.RANDOM.value, True)
        return entry.key

    def acquire_key(
        self,
        service: KeyService,
        strategy: KeySelectionStrategy = KeySelectionStrategy.ROUND_ROBIN,
    ) -> str:
        """
        Select a key or raise.

        Raises:
            UnknownServiceError: No pool registered for service
            NoKeysAvailableError: Every key exhausted or inactive
        """
        if service not in self._pools:
            raise UnknownServiceError(service.value)

        if strategy == KeySelectionStrategy.RANDOM:
            key = self.get_random_key(service)
        else:
            key = self.get_next_key(service)

        if key is None:
            raise NoKeysAvailableError(service.value)
        return key

    # ========================================================================
    # Manual overrides
    # ========================================================================

    def mark_key_inactive(self, service: KeyService, key_prefix: str) -> bool:
        """Deactivate the first key starting with key_prefix (revoked, suspended)."""
        entry = self._find_by_prefix(service, key_prefix)
        if entry is None:
            return False
        entry.is_active = False
        logger.warning(
            "api_key_marked_inactive",
            service=service.value,
            key_prefix=entry.prefix,
        )
        return True

    def reactivate_key(self, service: KeyService, key_prefix: str) -> bool:
        """Reactivate the first key starting with key_prefix."""
        entry = self._find_by_prefix(service, key_prefix)
        if entry is None:
            return False
        entry.is_active = True
        logger.info(
            "api_key_reactivated",
            service=service.value,
            key_prefix=entry.prefix,
        )
        return True

    def reset_service(self, service: KeyService) -> None:
        """Zero usage and reactivate every key of a service."""
        keys = self._pools.get(service)
        if not keys:
            return
        now = self._clock()
        for entry in keys:
            self._reset(entry, now)
        logger.info("api_key_pool_reset", service=service.value)

    def reset_all_keys(self) -> None:
        """Reset every registered pool."""
        for service in self._pools:
            self.reset_service(service)

    # ========================================================================
    # Stats
    # ========================================================================

    def get_service_stats(self, service: KeyService) -> ServiceStats | None:
        """Aggregate counts for one pool, or None if it is not registered."""
        keys = self._pools.get(service)
        if keys is None:
            return None

        total_usage = sum(entry.daily_usage for entry in keys)
        total_limit = sum(entry.daily_limit for entry in keys)
        return ServiceStats(
            service=service,
            total_keys=len(keys),
            active_keys=sum(1 for entry in keys if entry.is_available),
            total_usage=total_usage,
            total_limit=total_limit,
            utilization_rate=(total_usage / total_limit) * 100 if total_limit > 0 else 0.0,
        )

    def get_all_stats(self) -> list[ServiceStats]:
        """Stats for every registered pool."""
        stats = []
        for service in self._pools:
            service_stats = self.get_service_stats(service)
            if service_stats is not None:
                stats.append(service_stats)
        return stats

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _find_by_prefix(self, service: KeyService, key_prefix: str) -> ApiKeyEntry | None:
        for entry in self._pools.get(service, []):
            if entry.key.startswith(key_prefix):
                return entry
        return None

    def _reset_if_new_day(self, entry: ApiKeyEntry, now: datetime) -> None:
        if now.date() != entry.last_reset:
            self._reset(entry, now)

    @staticmethod
    def _reset(entry: ApiKeyEntry, now: datetime) -> None:
        entry.daily_usage = 0
        entry.last_reset = now.date()
        entry.is_active = True

    @staticmethod
    def _consume(entry: ApiKeyEntry, now: datetime) -> None:
        entry.daily_usage += 1
        entry.last_used_at = now
