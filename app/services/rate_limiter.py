"""
Fixed-window rate limiter

A counter per (actor, action) key lives in the cache store with the window
as its TTL. The first hit opens the window; once the count passes the limit
further hits are refused until the counter expires. Store failures fail open.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from app.core.clock import Clock
from app.core.logging import get_logger, log_security_event
from app.database.cache_store import CacheStore
from app.services.cache_service import RATE_LIMIT_PREFIX

logger = get_logger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    attempts: int
    max_attempts: int
    remaining: int
    retry_after: int  # seconds until the window resets
    reset_time: datetime
    error: Optional[str] = None  # set when the store failed and the check failed open

    def to_dict(self) -> dict:
        data = asdict(self)
        data["reset_time"] = self.reset_time.isoformat()
        return data


class RateLimiter:
    def __init__(self, store: CacheStore, clock: Clock):
        self.store = store
        self.clock = clock

    def check(self, key: str, max_attempts: int, window_seconds: int) -> RateLimitResult:
        """
        Count one attempt against `key`.

        Args:
            key: actor/action identifier, e.g. "send_message:12:3"
            max_attempts: attempts allowed per window
            window_seconds: window length

        Returns:
            RateLimitResult; `allowed` is False once attempts exceed the limit
        """
        cache_key = RATE_LIMIT_PREFIX + key
        now = self.clock.now()

        try:
            attempts = self.store.incr(cache_key, window_seconds)
        except Exception as e:
            logger.warning(
                f"Rate limit store unavailable for {key}, failing open: {e}",
                extra={"event_type": "rate_limit_fail_open", "rate_limit_key": key}
            )
            return RateLimitResult(
                allowed=True,
                attempts=1,
                max_attempts=max_attempts,
                remaining=max(0, max_attempts - 1),
                retry_after=window_seconds,
                reset_time=now + timedelta(seconds=window_seconds),
                error=str(e),
            )

        retry_after = self._seconds_left(cache_key, window_seconds)
        allowed = attempts <= max_attempts

        if not allowed:
            log_security_event(
                logger,
                "rate_limit_exceeded",
                severity="low",
                rate_limit_key=key,
                attempts=attempts,
                max_attempts=max_attempts,
                retry_after=retry_after,
            )

        return RateLimitResult(
            allowed=allowed,
            attempts=attempts,
            max_attempts=max_attempts,
            remaining=max(0, max_attempts - attempts),
            retry_after=retry_after,
            reset_time=now + timedelta(seconds=retry_after),
        )

    def _seconds_left(self, cache_key: str, window_seconds: int) -> int:
        """Remaining TTL of the counter, or the nominal window if it cannot be read"""
        try:
            ttl = self.store.ttl(cache_key)
        except Exception as e:
            logger.warning(f"Could not read TTL for {cache_key}: {e}")
            return window_seconds
        return ttl if ttl > 0 else window_seconds

    def attempts(self, key: str) -> int:
        try:
            value = self.store.get(RATE_LIMIT_PREFIX + key)
            return int(value) if value else 0
        except Exception as e:
            logger.warning(f"Failed to read rate limit counter {key}: {e}")
            return 0

    def clear(self, key: str) -> bool:
        try:
            return self.store.delete(RATE_LIMIT_PREFIX + key)
        except Exception as e:
            logger.warning(f"Failed to reset rate limit counter {key}: {e}")
            return False
