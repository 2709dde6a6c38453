from services.backend import ApiResponse, RequestCache


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_entries_expire_and_are_dropped_on_lookup():
    clock = FakeClock()
    cache = RequestCache(ttl=300, clock=clock)
    envelope = ApiResponse(data={"id": 1})
    cache.set("http://backend.test/api/campaigns", envelope)

    clock.now = 299.9
    assert cache.get("http://backend.test/api/campaigns") is envelope

    clock.now = 300
    assert cache.get("http://backend.test/api/campaigns") is None
    assert len(cache) == 0


def test_per_entry_ttl_override():
    clock = FakeClock()
    cache = RequestCache(ttl=300, clock=clock)
    cache.set("u", ApiResponse(data=1), ttl=5)

    clock.now = 5
    assert "u" not in cache


def test_invalidate_matches_substrings_only():
    cache = RequestCache()
    cache.set("http://b/api/campaigns?page=1", ApiResponse(data=1))
    cache.set("http://b/api/campaigns?page=2", ApiResponse(data=2))
    cache.set("http://b/api/responses", ApiResponse(data=3))

    assert cache.invalidate("campaigns?page=") == 2
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


def test_expired_entries_are_purged_once_over_capacity():
    clock = FakeClock()
    cache = RequestCache(ttl=1, max_entries=100, clock=clock)
    for i in range(100):
        cache.set(f"http://b/api/email-accounts/detect-provider?email=user{i}@example.com",
                  ApiResponse(data={"provider": "other"}))
    assert len(cache) == 100

    clock.now = 1000
    cache.set("http://b/api/campaigns", ApiResponse(data=[]))
    assert len(cache) == 1
    assert "http://b/api/campaigns" in cache


def test_capacity_evicts_oldest_live_writes():
    clock = FakeClock()
    cache = RequestCache(ttl=300, max_entries=2, clock=clock)
    cache.set("u1", ApiResponse(data=1))
    clock.now = 1
    cache.set("u2", ApiResponse(data=2))
    clock.now = 2
    cache.set("u3", ApiResponse(data=3))

    assert len(cache) == 2
    assert "u1" not in cache
    assert cache.get("u3").data == 3


def test_sweep_drops_only_expired_entries():
    clock = FakeClock()
    cache = RequestCache(ttl=300, clock=clock)
    cache.set("short", ApiResponse(data=1), ttl=5)
    cache.set("long", ApiResponse(data=2))

    clock.now = 10
    assert cache.sweep() == 1
    assert len(cache) == 1
    assert "long" in cache
