"""Per-identifier request quotas and bearer-token checks for the HTTP surface."""

import hmac
import math
import time
from typing import Mapping, Optional

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import MovingWindowRateLimiter

from .models import now_ms
from .ports import RateLimitDecision


class SlidingWindowRateLimiter:
    """Allows ``limit`` hits per identifier within any rolling ``window_seconds``.

    Backed by the ``limits`` moving-window strategy. The default in-process
    storage drops an identifier's entries once they fall out of the window.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int = 60,
        storage: Optional[Storage] = None,
        namespace: str = "eventmet",
    ):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.item = RateLimitItemPerSecond(limit, window_seconds, namespace=namespace)
        self.storage = storage or MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self.storage)

    def check(self, identifier: str) -> RateLimitDecision:
        allowed = self._strategy.hit(self.item, identifier)
        stats = self._strategy.get_window_stats(self.item, identifier)
        reset_ms = int(stats.reset_time * 1000)

        if not allowed:
            return RateLimitDecision(
                allowed=False,
                limit=self.limit,
                remaining=0,
                reset_ms=reset_ms,
                retry_after_seconds=max(1, math.ceil(stats.reset_time - time.time())),
            )
        return RateLimitDecision(
            allowed=True,
            limit=self.limit,
            remaining=stats.remaining,
            reset_ms=reset_ms,
        )

    def reset(self) -> None:
        self.storage.reset()


class NoopRateLimiter:
    """Used when rate limiting is disabled; every request passes."""

    def __init__(self, limit: int = 0):
        self.limit = limit

    def check(self, identifier: str) -> RateLimitDecision:
        return RateLimitDecision(allowed=True, limit=self.limit, remaining=self.limit, reset_ms=now_ms())


def get_client_ip(headers: Mapping[str, str]) -> str:
    """Client address from proxy headers; "x-forwarded-for" may list several hops."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown"


def verify_bearer(authorization: Optional[str], secret: Optional[str]) -> bool:
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization.encode(), f"Bearer {secret}".encode())
