"""In-process sliding-window rate limiter for expensive AI endpoints."""

import asyncio
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from funnel_presentations.config import Settings, get_settings


@dataclass
class RateLimitDecision:
    allowed: bool
    identifier: str
    remaining: int
    retry_after: int = 0


def get_rate_limit_identifier(user_id: str, endpoint: str) -> str:
    """Identifier derived from user and endpoint so limits don't bleed across endpoints."""
    return f"{user_id}:{endpoint}"


class RateLimiter:
    """Sliding window of request timestamps per identifier.

    Single-process only; a shared store (Redis) is needed once the API runs
    more than one worker.
    """

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        """Trim expired hits and drop identifiers with none left."""
        for identifier in list(self._hits):
            hits = self._hits[identifier]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if not hits:
                del self._hits[identifier]

    def tracked_identifiers(self) -> int:
        return len(self._hits)

    async def check(self, identifier: str) -> RateLimitDecision:
        """Record a hit for ``identifier`` if allowed."""
        async with self._lock:
            now = self._clock()
            self._prune(now)
            hits = self._hits[identifier]

            if len(hits) >= self.max_requests:
                retry_after = max(1, int(self.window_seconds - (now - hits[0])) + 1)
                return RateLimitDecision(
                    allowed=False, identifier=identifier, remaining=0, retry_after=retry_after
                )

            hits.append(now)
            return RateLimitDecision(
                allowed=True,
                identifier=identifier,
                remaining=self.max_requests - len(hits),
            )

    def reset(self) -> None:
        self._hits.clear()


_rate_limiter: RateLimiter | None = None


def get_rate_limiter(settings: Settings | None = None) -> RateLimiter:
    """Process-wide limiter built from settings on first use."""
    global _rate_limiter
    if _rate_limiter is None:
        settings = settings or get_settings()
        _rate_limiter = RateLimiter(
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _rate_limiter
