from forecast_engine.utils.cache import TTLCache


def make_cache(ttl=10):
    now = [0.0]
    cache = TTLCache("test", ttl, clock=lambda: now[0])
    return cache, now


def test_entries_expire_after_ttl():
    cache, now = make_cache()
    cache.set("user-1", "forecast")
    now[0] = 9.5
    assert cache.get("user-1") == "forecast"
    now[0] = 10.0
    assert cache.get("user-1") is None
    assert len(cache) == 0


def test_set_replaces_entry_and_resets_age():
    cache, now = make_cache()
    cache.set("user-1", "old")
    now[0] = 8.0
    cache.set("user-1", "new")
    now[0] = 15.0
    assert cache.get("user-1") == "new"


def test_invalidate_where_drops_matching_keys():
    cache, _ = make_cache()
    cache.set(("user-1", "expense"), 1)
    cache.set(("user-1", "income"), 2)
    cache.set(("user-2", "expense"), 3)

    assert cache.invalidate_where(lambda key: key[0] == "user-1") == 2
    assert ("user-2", "expense") in cache
    assert ("user-1", "income") not in cache
    assert cache.invalidate("missing") is False
