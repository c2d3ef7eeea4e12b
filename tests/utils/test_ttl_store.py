"""
Tests for TTLStore.
"""
from shopbridge.utils.ttl_store import TTLStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLStore:

    def test_put_and_get(self):
        store = TTLStore(ttl_seconds=60, clock=FakeClock())

        key = store.put({"orders": 4})

        assert store.get(key) == {"orders": 4}
        assert key in store
        assert len(store) == 1

    def test_generated_keys_are_unique(self):
        store = TTLStore(ttl_seconds=60)

        assert store.put(1) != store.put(2)

    def test_explicit_key(self):
        store = TTLStore(ttl_seconds=60)

        assert store.put("value", key="abc") == "abc"
        assert store.get("abc") == "value"

    def test_entries_expire(self):
        clock = FakeClock()
        store = TTLStore(ttl_seconds=60, clock=clock)
        key = store.put("preview")

        clock.now += 60

        assert store.get(key) is None
        assert key not in store

    def test_pop_removes_entry(self):
        store = TTLStore(ttl_seconds=60, clock=FakeClock())
        key = store.put("preview")

        assert store.pop(key) == "preview"
        assert store.pop(key) is None

    def test_pop_expired_returns_none(self):
        clock = FakeClock()
        store = TTLStore(ttl_seconds=10, clock=clock)
        key = store.put("preview")
        clock.now += 11

        assert store.pop(key) is None

    def test_purge_expired(self):
        clock = FakeClock()
        store = TTLStore(ttl_seconds=10, clock=clock)
        store.put("a")
        clock.now += 5
        store.put("b")
        clock.now += 6

        assert store.purge_expired() == 1
        assert len(store) == 1
