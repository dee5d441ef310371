from unittest.mock import MagicMock

import pytest

from app.database.cache_store import TTL_MISSING, TTL_PERSISTENT, MemoryCacheStore, RedisCacheStore


class TestMemoryCacheStore:
    """Process-local cache store"""

    def test_value_expires_with_clock(self, store, clock):
        store.set("chat:k", "v", 60)

        clock.advance(seconds=59)
        assert store.get("chat:k") == "v"

        clock.advance(seconds=1)
        assert store.get("chat:k") is None

    def test_ttl_reports_remaining_seconds(self, store, clock):
        store.set("chat:k", "v", 60)
        clock.advance(seconds=20)

        assert store.ttl("chat:k") == 40
        assert store.ttl("chat:missing") == TTL_MISSING

    def test_incr_opens_window_on_first_hit(self, store, clock):
        assert store.incr("counter", 30) == 1
        clock.advance(seconds=10)
        assert store.incr("counter", 30) == 2

        # Later hits do not extend the window
        assert store.ttl("counter") == 20
        clock.advance(seconds=20)
        assert store.incr("counter", 30) == 1

    def test_push_capped_keeps_newest_entries(self, store):
        for i in range(5):
            store.push_capped("chat:activity", str(i), 3, 60)

        assert store.list_range("chat:activity") == ["4", "3", "2"]
        assert store.list_range("chat:activity", 0, 0) == ["4"]
        assert store.get("chat:activity") is None

    def test_delete_prefix(self, store):
        store.set("chat:room:1:a", "1", 60)
        store.set("chat:room:1:b", "2", 60)
        store.set("chat:room:2:a", "3", 60)

        assert store.delete_prefix("chat:room:1:") == 2
        assert store.keys() == ["chat:room:2:a"]
        assert store.delete("chat:room:2:a") is True
        assert store.delete("chat:room:2:a") is False


class TestRedisCacheStore:
    """Redis backed cache store against a mocked client"""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.pipeline.return_value = MagicMock()
        return client

    def test_set_uses_expiry(self, client):
        RedisCacheStore(client).set("chat:k", "v", 30)

        client.setex.assert_called_once_with("chat:k", 30, "v")

    def test_first_increment_sets_window(self, client):
        client.pipeline.return_value.execute.return_value = [1, TTL_PERSISTENT]

        assert RedisCacheStore(client).incr("counter", 60) == 1
        client.expire.assert_called_once_with("counter", 60)

    def test_later_increment_keeps_window(self, client):
        client.pipeline.return_value.execute.return_value = [4, 37]

        assert RedisCacheStore(client).incr("counter", 60) == 4
        client.expire.assert_not_called()

    def test_counter_without_expiry_is_repaired(self, client):
        client.pipeline.return_value.execute.return_value = [9, TTL_PERSISTENT]

        RedisCacheStore(client).incr("counter", 60)
        client.expire.assert_called_once_with("counter", 60)

    def test_delete_prefix_deletes_in_batches(self, client):
        client.scan_iter.return_value = iter(["chat:a", "chat:b", "chat:c"])
        client.delete.side_effect = lambda *keys: len(keys)

        deleted = RedisCacheStore(client, scan_batch=2).delete_prefix("chat:")

        assert deleted == 3
        client.scan_iter.assert_called_once_with(match="chat:*", count=2)
        assert client.delete.call_count == 2

    def test_push_capped_trims_and_refreshes(self, client):
        pipe = client.pipeline.return_value

        RedisCacheStore(client).push_capped("chat:activity", "x", 100, 3600)

        pipe.lpush.assert_called_once_with("chat:activity", "x")
        pipe.ltrim.assert_called_once_with("chat:activity", 0, 99)
        pipe.expire.assert_called_once_with("chat:activity", 3600)
        pipe.execute.assert_called_once()
