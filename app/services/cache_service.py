"""
Chat cache layer

Read-through cache for derived chat views (room list, room stats, online
users, message history pages, presence snapshots) plus the room activity
ring buffers. The durable store is always written first; the owning write
path then invalidates the affected keys here.

Cache backend failures never surface to callers: reads fall back to the
compute function and invalidations degrade to a logged warning.
"""

import hashlib
import json
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from app.core.clock import Clock
from app.core.config import Settings
from app.core.logging import get_logger
from app.database.cache_store import CacheStore
from app.utils.time_utils import hour_bucket

logger = get_logger(__name__)

# Key patterns
CACHE_NAMESPACE = "chat:"
ROOM_LIST_KEY = "chat:rooms:list"
ROOM_STATS_KEY = "chat:room:stats:{room_id}"
ROOM_ONLINE_KEY = "chat:room:online:{room_id}"
ROOM_MESSAGES_PREFIX = "chat:room:messages:{room_id}:page:"
USER_PRESENCE_KEY = "chat:user:presence:{user_id}:{room_id}"
RATE_LIMIT_PREFIX = "chat:rate_limit:"
ROOM_ACTIVITY_KEY = "chat:room:activity:{room_id}:{bucket}"
SPAM_FREQUENCY_KEY = "chat:spam:frequency:{user_id}:{room_id}"

ACTIVITY_TTL = 86400  # 24h


class ChatCacheService:
    """Chat cache facade over an injected `CacheStore`"""

    def __init__(self, store: CacheStore, clock: Clock, settings: Settings):
        self.store = store
        self.clock = clock
        self.settings = settings

    # =========================================================================
    # Generic read-through
    # =========================================================================

    def remember(self, key: str, ttl: int, compute: Callable[[], Any]) -> Any:
        """
        Return the cached JSON value for `key`, computing and storing it on a miss.

        Args:
            key: cache key
            ttl: seconds the computed value stays valid
            compute: producer of a JSON-serialisable value

        Returns:
            cached or freshly computed value
        """
        try:
            cached = self.store.get(key)
            if cached is not None:
                logger.debug(f"Cache hit: {key}")
                return json.loads(cached)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}, computing directly: {e}")
            return compute()

        logger.debug(f"Cache miss: {key}")
        value = compute()
        self.put(key, value, ttl)
        return value

    def put(self, key: str, value: Any, ttl: int) -> bool:
        try:
            self.store.set(key, json.dumps(value, default=str, ensure_ascii=False), ttl)
            return True
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        try:
            cached = self.store.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return default
        return default if cached is None else json.loads(cached)

    def forget(self, key: str) -> bool:
        try:
            return self.store.delete(key)
        except Exception as e:
            logger.warning(f"Cache delete failed for {key}: {e}")
            return False

    def forget_by_prefix(self, prefix: str) -> int:
        """Best-effort bulk delete; a no-op with a warning where the store cannot enumerate keys"""
        if not getattr(self.store, "supports_prefix_delete", False):
            logger.warning(
                f"Cache store does not support prefix deletion, skipping {prefix}*",
                extra={"event_type": "cache_prefix_unsupported", "prefix": prefix}
            )
            return 0
        try:
            deleted = self.store.delete_prefix(prefix)
            logger.debug(f"Cache prefix cleared: {prefix}* ({deleted} keys)")
            return deleted
        except Exception as e:
            logger.warning(f"Cache prefix delete failed for {prefix}*: {e}")
            return 0

    # =========================================================================
    # Keys
    # =========================================================================

    @staticmethod
    def room_stats_key(room_id: int) -> str:
        return ROOM_STATS_KEY.format(room_id=room_id)

    @staticmethod
    def online_users_key(room_id: int) -> str:
        return ROOM_ONLINE_KEY.format(room_id=room_id)

    @staticmethod
    def user_presence_key(user_id: int, room_id: int) -> str:
        return USER_PRESENCE_KEY.format(user_id=user_id, room_id=room_id)

    @staticmethod
    def message_page_key(room_id: int, params: Dict[str, Any]) -> str:
        """Key for one history page, derived from every page-defining parameter"""
        digest = hashlib.md5(json.dumps(params, sort_keys=True, default=str).encode()).hexdigest()
        return ROOM_MESSAGES_PREFIX.format(room_id=room_id) + digest

    @staticmethod
    def rate_limit_key(key: str) -> str:
        return RATE_LIMIT_PREFIX + key

    @staticmethod
    def spam_frequency_key(user_id: int, room_id: int) -> str:
        return SPAM_FREQUENCY_KEY.format(user_id=user_id, room_id=room_id)

    # =========================================================================
    # Invalidation hooks (call after the durable write)
    # =========================================================================

    def invalidate_room_list(self):
        self.forget(ROOM_LIST_KEY)

    def invalidate_room_stats(self, room_id: int):
        self.forget(self.room_stats_key(room_id))

    def invalidate_online_users(self, room_id: int):
        self.forget(self.online_users_key(room_id))

    def invalidate_message_history(self, room_id: int):
        self.forget_by_prefix(ROOM_MESSAGES_PREFIX.format(room_id=room_id))

    def invalidate_user_presence(self, user_id: int, room_id: int):
        self.forget(self.user_presence_key(user_id, room_id))

    def invalidate_presence(self, room_id: int, user_id: Optional[int] = None):
        """Online flag changed for a member"""
        self.invalidate_online_users(room_id)
        self.invalidate_room_stats(room_id)
        self.invalidate_room_list()
        if user_id is not None:
            self.invalidate_user_presence(user_id, room_id)

    def invalidate_messages(self, room_id: int):
        """A message was written to or removed from the room"""
        self.invalidate_room_stats(room_id)
        self.invalidate_online_users(room_id)
        self.invalidate_message_history(room_id)
        self.invalidate_room_list()

    def invalidate_room(self, room_id: int):
        self.invalidate_messages(room_id)
        self.invalidate_presence(room_id)

    def clear_all(self) -> int:
        return self.forget_by_prefix(CACHE_NAMESPACE)

    # =========================================================================
    # Room activity ring buffers
    # =========================================================================

    def track_room_activity(self, room_id: int, activity: str, data: Optional[Dict] = None):
        now = self.clock.now()
        key = ROOM_ACTIVITY_KEY.format(room_id=room_id, bucket=hour_bucket(now))
        entry = {"activity": activity, "data": data or {}, "timestamp": now.isoformat()}
        try:
            self.store.push_capped(
                key,
                json.dumps(entry, default=str, ensure_ascii=False),
                self.settings.activity_buffer_size,
                ACTIVITY_TTL,
            )
        except Exception as e:
            logger.warning(f"Failed to track activity for room {room_id}: {e}")

    def get_room_activity(self, room_id: int, hours: int = 24) -> List[Dict]:
        """Activity entries for the last `hours` hourly buckets, newest first"""
        now = self.clock.now()
        entries: List[Dict] = []
        for offset in range(hours):
            key = ROOM_ACTIVITY_KEY.format(room_id=room_id, bucket=hour_bucket(now - timedelta(hours=offset)))
            try:
                raw_entries = self.store.list_range(key, 0, -1)
            except Exception as e:
                logger.warning(f"Failed to read activity bucket {key}: {e}")
                continue
            entries.extend(json.loads(raw) for raw in raw_entries)
        return entries
