"""
Key-value cache store port and its backends

The chat cache layer, rate limiter and spam counters talk to a `CacheStore`.
Backends raise on infrastructure failure; callers decide whether to degrade.
"""

import math
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol, Tuple

import redis

from app.core.clock import Clock
from app.core.logging import get_logger

logger = get_logger(__name__)

# ttl() sentinels, same meaning as the Redis TTL command
TTL_MISSING = -2
TTL_PERSISTENT = -1


class CacheStore(Protocol):
    supports_prefix_delete: bool

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl: int) -> None: ...

    def delete(self, key: str) -> bool: ...

    def delete_prefix(self, prefix: str) -> int: ...

    def incr(self, key: str, ttl: int) -> int:
        """Atomic increment; a newly created counter expires after `ttl` seconds"""
        ...

    def ttl(self, key: str) -> int: ...

    def push_capped(self, key: str, value: str, max_len: int, ttl: int) -> None:
        """Prepend to a list, keep the newest `max_len` entries, refresh expiry"""
        ...

    def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]: ...


# =============================================================================
# Redis backend
# =============================================================================

class RedisCacheStore:
    supports_prefix_delete = True

    def __init__(self, client: redis.Redis, scan_batch: int = 500):
        self.client = client
        self.scan_batch = scan_batch

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self.client.setex(key, ttl, value)

    def delete(self, key: str) -> bool:
        return bool(self.client.delete(key))

    def delete_prefix(self, prefix: str) -> int:
        deleted = 0
        batch = []
        for key in self.client.scan_iter(match=f"{prefix}*", count=self.scan_batch):
            batch.append(key)
            if len(batch) >= self.scan_batch:
                deleted += self.client.delete(*batch)
                batch = []
        if batch:
            deleted += self.client.delete(*batch)
        return deleted

    def incr(self, key: str, ttl: int) -> int:
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, remaining = pipe.execute()

        # Only a fresh counter (or one that lost its expiry) gets a window
        if count == 1 or remaining == TTL_PERSISTENT:
            self.client.expire(key, ttl)
        return int(count)

    def ttl(self, key: str) -> int:
        return int(self.client.ttl(key))

    def push_capped(self, key: str, value: str, max_len: int, ttl: int) -> None:
        pipe = self.client.pipeline()
        pipe.lpush(key, value)
        pipe.ltrim(key, 0, max_len - 1)
        pipe.expire(key, ttl)
        pipe.execute()

    def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        return self.client.lrange(key, start, stop)


# =============================================================================
# Process-local backend
# =============================================================================

class MemoryCacheStore:
    """
    Single-process store with clock-driven expiry.

    Used when no Redis is configured (local runs, CLI maintenance against a
    scratch database) and wherever a deterministic clock is injected.
    """

    supports_prefix_delete = True

    def __init__(self, clock: Clock):
        self.clock = clock
        self._data: Dict[str, Tuple[object, Optional[datetime]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[object, Optional[datetime]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and self.clock.now() >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl: int) -> datetime:
        return self.clock.now() + timedelta(seconds=ttl)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            if entry is None or isinstance(entry[0], list):
                return None
            return str(entry[0])

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl))

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._data if key.startswith(prefix)]
            for key in keys:
                del self._data[key]
            return len(keys)

    def incr(self, key: str, ttl: int) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self._data[key] = (1, self._expiry(ttl))
                return 1
            count = int(entry[0]) + 1
            self._data[key] = (count, entry[1])
            return count

    def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return TTL_MISSING
            if entry[1] is None:
                return TTL_PERSISTENT
            return max(0, math.ceil((entry[1] - self.clock.now()).total_seconds()))

    def push_capped(self, key: str, value: str, max_len: int, ttl: int) -> None:
        with self._lock:
            entry = self._live(key)
            items = list(entry[0]) if entry and isinstance(entry[0], list) else []
            items.insert(0, value)
            self._data[key] = (items[:max_len], self._expiry(ttl))

    def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        with self._lock:
            entry = self._live(key)
            if entry is None or not isinstance(entry[0], list):
                return []
            items = entry[0]
            end = len(items) if stop == -1 else stop + 1
            return list(items[start:end])

    def keys(self) -> List[str]:
        with self._lock:
            return [key for key in list(self._data) if self._live(key) is not None]
