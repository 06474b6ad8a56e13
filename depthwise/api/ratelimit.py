"""In-memory sliding-window request limiter.

Each key keeps the timestamps of its recent hits; stale ones are pruned on
every check.  Keys are scoped by action and caller (user id, then client id,
then IP), so limits are per process and reset on restart.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request

from depthwise.api.context import client_id_for, client_ip
from depthwise.api.deps import get_identity
from depthwise.config import settings
from depthwise.errors import RateLimitExceeded
from depthwise.identity import Identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


class SlidingWindowLimiter:
    def __init__(self, window_seconds: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.window = window_seconds
        self._clock = clock
        self._hits: dict[str, list[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int) -> RateDecision:
        """Record one request for *key* unless it would exceed *limit*."""
        now = self._clock()
        with self._lock:
            recent = [t for t in self._hits[key] if now - t < self.window]
            if len(recent) >= limit:
                self._hits[key] = recent
                return RateDecision(False, 0, retry_after=self.window - (now - min(recent)))
            recent.append(now)
            self._hits[key] = recent
            return RateDecision(True, limit - len(recent))

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


LIMITS: dict[str, tuple[str, str]] = {
    "create": ("create_limit_anonymous", "create_limit_authenticated"),
    "explore": ("explore_limit_anonymous", "explore_limit_authenticated"),
}


def limit_for(action: str, authenticated: bool) -> int:
    anonymous_field, authenticated_field = LIMITS[action]
    return int(getattr(settings, authenticated_field if authenticated else anonymous_field))


def caller_key(request: Request, identity: Identity) -> str:
    if identity.authenticated:
        return f"user:{identity.user_id}"
    client_id = client_id_for(request)
    if client_id:
        return f"client:{client_id}"
    return f"ip:{client_ip(request) or 'unknown'}"


def rate_limit(action: str) -> Callable[..., None]:
    """Dependency factory enforcing the *action* limit for the current caller."""

    def dependency(request: Request, identity: Identity = Depends(get_identity)) -> None:
        limiter: Optional[SlidingWindowLimiter] = getattr(request.app.state, "rate_limiter", None)
        if limiter is None or not settings.rate_limit_enabled:
            return
        key = f"{action}:{caller_key(request, identity)}"
        limit = limit_for(action, identity.authenticated)
        decision = limiter.hit(key, limit)
        if not decision.allowed:
            logger.warning("Rate limit hit for %s (%d per %ds)", key, limit, limiter.window)
            raise RateLimitExceeded(retryAfter=int(decision.retry_after) + 1, limit=limit)

    return dependency
