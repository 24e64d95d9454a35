"""
Rate Limiter - sliding-log admission control.

Exact request timestamps are retained (not bucketed), giving precise
sliding-window behavior. Limiters are independent objects; chat and
try-on each get their own pool so they never share a window.
"""

import time
from collections import deque
from collections.abc import Callable

from fashionai_quota.observability import get_logger, metrics

logger = get_logger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class RateLimiter:
    """
    Allow at most max_requests within any window_ms interval.

    Usage:
        limiter = RateLimiter(max_requests=5, window_ms=60_000)
        if not limiter.can_make_request():
            wait_ms = limiter.get_time_until_next_request()
    """

    def __init__(
        self,
        max_requests: int = 5,
        window_ms: int = 60_000,
        clock: Callable[[], float] | None = None,
        feature: str = "default",
    ) -> None:
        if max_requests <= 0:
            raise ValueError(f"max_requests must be positive: {max_requests}")
        if window_ms <= 0:
            raise ValueError(f"window_ms must be positive: {window_ms}")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.feature = feature
        self._clock = clock or _monotonic_ms
        self._timestamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_ms:
            self._timestamps.popleft()

    def can_make_request(self) -> bool:
        """Record and allow the request if the window has room."""
        now = self._clock()
        self._prune(now)

        allowed = len(self._timestamps) < self.max_requests
        if allowed:
            self._timestamps.append(now)
        metrics.record_rate_limit(self.feature, allowed)
        return allowed

    def get_time_until_next_request(self) -> int:
        """Milliseconds until the oldest recorded request leaves the window."""
        if not self._timestamps:
            return 0
        elapsed = self._clock() - self._timestamps[0]
        return max(0, int(self.window_ms - elapsed))

    def get_current_request_count(self) -> int:
        """Requests currently inside the window."""
        self._prune(self._clock())
        return len(self._timestamps)


class RateLimiterPool:
    """
    One RateLimiter per client for a single feature.

    Limiters are created lazily; idle clients are dropped by prune_idle(),
    or by prune_if_crowded() at most once per window.
    """

    def __init__(
        self,
        feature: str,
        max_requests: int,
        window_ms: int,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.feature = feature
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._limiters: dict[str, RateLimiter] = {}
        self._last_prune: float | None = None

    def for_client(self, client_id: str) -> RateLimiter:
        """Get or create the limiter for client_id."""
        limiter = self._limiters.get(client_id)
        if limiter is None:
            limiter = RateLimiter(
                max_requests=self.max_requests,
                window_ms=self.window_ms,
                clock=self._clock,
                feature=self.feature,
            )
            self._limiters[client_id] = limiter
        return limiter

    def prune_idle(self) -> int:
        """Drop limiters whose window is empty; returns how many were removed."""
        idle = [
            client_id
            for client_id, limiter in self._limiters.items()
            if limiter.get_current_request_count() == 0
        ]
        for client_id in idle:
            del self._limiters[client_id]
        if idle:
            logger.debug("rate_limiters_pruned", feature=self.feature, removed=len(idle))
        return len(idle)

    def prune_if_crowded(self, max_clients: int) -> int:
        """Prune idle limiters when tracking more than max_clients.

        Scans at most once per window_ms, so a pool full of active clients
        does not pay a full scan on every request.
        """
        if len(self._limiters) <= max_clients:
            return 0
        now = (self._clock or _monotonic_ms)()
        if self._last_prune is not None and now - self._last_prune < self.window_ms:
            return 0
        self._last_prune = now
        return self.prune_idle()

    def __len__(self) -> int:
        return len(self._limiters)
