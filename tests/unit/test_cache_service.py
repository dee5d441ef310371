import json
from unittest.mock import MagicMock

import pytest

from app.core.config import Settings
from app.services.cache_service import ROOM_LIST_KEY, ChatCacheService


@pytest.fixture
def cache(store, clock, settings):
    return ChatCacheService(store, clock, settings)


class TestReadThrough:
    """remember() read-through"""

    def test_miss_computes_and_stores(self, cache, store):
        compute = MagicMock(return_value={"rooms": [1, 2]})

        assert cache.remember("chat:test", 60, compute) == {"rooms": [1, 2]}
        assert cache.remember("chat:test", 60, compute) == {"rooms": [1, 2]}

        compute.assert_called_once()
        assert json.loads(store.get("chat:test")) == {"rooms": [1, 2]}

    def test_entry_expires(self, cache, clock):
        compute = MagicMock(return_value=1)
        cache.remember("chat:test", 60, compute)

        clock.advance(seconds=61)
        cache.remember("chat:test", 60, compute)

        assert compute.call_count == 2

    def test_store_failure_falls_back_to_compute(self, clock, settings):
        store = MagicMock()
        store.get.side_effect = ConnectionError("cache down")
        cache = ChatCacheService(store, clock, settings)

        assert cache.remember("chat:test", 60, lambda: [1]) == [1]
        assert cache.get("chat:test", "default") == "default"

    def test_write_failure_still_returns_value(self, clock, settings):
        store = MagicMock()
        store.get.return_value = None
        store.set.side_effect = ConnectionError("cache down")
        cache = ChatCacheService(store, clock, settings)

        assert cache.remember("chat:test", 60, lambda: "fresh") == "fresh"
        assert cache.put("chat:test", "fresh", 60) is False


class TestInvalidation:
    """Invalidation hooks"""

    def test_invalidate_messages_clears_room_views(self, cache, store):
        store.set(ROOM_LIST_KEY, "[]", 60)
        store.set(cache.room_stats_key(1), "{}", 60)
        store.set(cache.online_users_key(1), "[]", 60)
        store.set(cache.message_page_key(1, {"limit": 50}), "{}", 60)
        store.set(cache.message_page_key(2, {"limit": 50}), "{}", 60)

        cache.invalidate_messages(1)

        assert store.keys() == [cache.message_page_key(2, {"limit": 50})]

    def test_page_keys_depend_on_every_parameter(self, cache):
        first = cache.message_page_key(1, {"cursor": None, "limit": 50, "direction": "before"})
        second = cache.message_page_key(1, {"cursor": None, "limit": 50, "direction": "after"})

        assert first != second
        assert first.startswith("chat:room:messages:1:page:")

    def test_prefix_delete_unsupported_is_a_no_op(self, clock, settings):
        store = MagicMock()
        store.supports_prefix_delete = False
        cache = ChatCacheService(store, clock, settings)

        assert cache.forget_by_prefix("chat:room:messages:1:") == 0
        store.delete_prefix.assert_not_called()

    def test_prefix_delete_failure_is_swallowed(self, clock, settings):
        store = MagicMock()
        store.supports_prefix_delete = True
        store.delete_prefix.side_effect = ConnectionError("cache down")
        cache = ChatCacheService(store, clock, settings)

        assert cache.forget_by_prefix("chat:") == 0

    def test_clear_all(self, cache, store):
        store.set("chat:a", "1", 60)
        store.set("other:a", "1", 60)

        assert cache.clear_all() == 1
        assert store.keys() == ["other:a"]


class TestRoomActivity:
    """Activity ring buffers"""

    def test_activity_is_bucketed_by_hour(self, cache, clock):
        cache.track_room_activity(1, "user_joined", {"user_id": 2})
        clock.advance(hours=1)
        cache.track_room_activity(1, "message_sent", {"user_id": 2})

        assert [entry["activity"] for entry in cache.get_room_activity(1)] == ["message_sent", "user_joined"]
        assert [entry["activity"] for entry in cache.get_room_activity(1, hours=1)] == ["message_sent"]

    def test_buffer_is_capped(self, store, clock):
        cache = ChatCacheService(store, clock, Settings(activity_buffer_size=3))
        for i in range(5):
            cache.track_room_activity(1, f"event_{i}")

        assert [entry["activity"] for entry in cache.get_room_activity(1)] == ["event_4", "event_3", "event_2"]
