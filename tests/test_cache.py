# tests/test_cache.py

from __future__ import annotations

from taskapp.cache import CacheKey, TaskQueryCache, read_through
from taskapp.schemas import TaskFilters

from .helpers import FakeClock


def _loader(result: list, calls: list):
    def load():
        calls.append(1)
        return list(result)
    return load


def test_entry_is_fresh_within_window_and_missed_after() -> None:
    clock = FakeClock()
    cache = TaskQueryCache(ttl=30.0, clock=clock)
    key = CacheKey("u1")

    cache.put(key, ["t1"])
    clock.advance(29.9)
    assert cache.get(key) == ["t1"]

    clock.advance(0.1)
    assert cache.get(key) is None
    assert len(cache) == 0


def test_invalidate_removes_only_that_users_entries() -> None:
    cache = TaskQueryCache(clock=FakeClock())
    cache.put(CacheKey("u1"), ["a"])
    cache.put(CacheKey("u1", status="DONE"), ["b"])
    cache.put(CacheKey("u2"), ["c"])

    assert cache.invalidate("u1") == 2
    assert cache.get(CacheKey("u1")) is None
    assert cache.get(CacheKey("u2")) == ["c"]
    assert cache.invalidate("nobody") == 0


def test_expire_drops_stale_entries() -> None:
    clock = FakeClock()
    cache = TaskQueryCache(ttl=30.0, clock=clock)
    cache.put(CacheKey("u1"), ["old"])
    clock.advance(20)
    cache.put(CacheKey("u2"), ["new"])
    clock.advance(15)

    assert cache.expire() == 1
    assert cache.get(CacheKey("u2")) == ["new"]


def test_stored_snapshot_is_not_affected_by_caller_mutation() -> None:
    cache = TaskQueryCache(clock=FakeClock())
    tasks = ["a"]
    cache.put(CacheKey("u1"), tasks)
    tasks.append("b")
    got = cache.get(CacheKey("u1"))
    got.append("c")
    assert cache.get(CacheKey("u1")) == ["a"]


def test_read_through_serves_second_unfiltered_call_from_cache() -> None:
    cache = TaskQueryCache(clock=FakeClock())
    calls: list = []
    load = _loader(["t1", "t2"], calls)

    first, cached1 = read_through(cache, "u1", TaskFilters(), load)
    second, cached2 = read_through(cache, "u1", TaskFilters(), load)

    assert (cached1, cached2) == (False, True)
    assert first == second == ["t1", "t2"]
    assert len(calls) == 1


def test_read_through_reloads_after_window() -> None:
    clock = FakeClock()
    cache = TaskQueryCache(ttl=30.0, clock=clock)
    calls: list = []
    load = _loader(["t1"], calls)

    read_through(cache, "u1", TaskFilters(), load)
    clock.advance(31)
    _, cached = read_through(cache, "u1", TaskFilters(), load)

    assert cached is False
    assert len(calls) == 2


def test_read_through_bypasses_cache_for_any_filter() -> None:
    cache = TaskQueryCache(clock=FakeClock())
    cache.put(CacheKey("u1"), ["stale"])
    calls: list = []
    load = _loader(["fresh"], calls)

    for filters in (
        TaskFilters(status="TODO"),
        TaskFilters(category="work"),
        TaskFilters(search="milk"),
        TaskFilters(search=""),
    ):
        tasks, cached = read_through(cache, "u1", filters, load)
        assert tasks == ["fresh"]
        assert cached is False

    assert len(calls) == 4
    # only the pre-seeded unfiltered entry exists
    assert len(cache) == 1
    assert cache.get(CacheKey("u1")) == ["stale"]


def test_empty_string_filter_is_not_treated_as_absent() -> None:
    assert TaskFilters().is_empty()
    assert not TaskFilters(category="").is_empty()


def test_mutation_during_load_is_not_hidden_by_cache() -> None:
    cache = TaskQueryCache(clock=FakeClock())
    rows = ["a"]

    def load():
        snapshot = list(rows)
        # another request writes and invalidates while this one is still reading
        rows.append("b")
        cache.invalidate("u1")
        return snapshot

    first, cached = read_through(cache, "u1", TaskFilters(), load)
    assert (first, cached) == (["a"], False)

    second, cached = read_through(cache, "u1", TaskFilters(), lambda: list(rows))
    assert (second, cached) == (["a", "b"], False)

    third, cached = read_through(cache, "u1", TaskFilters(), lambda: list(rows))
    assert (third, cached) == (["a", "b"], True)


def test_put_with_outdated_generation_is_refused() -> None:
    cache = TaskQueryCache(clock=FakeClock())
    before = cache.generation("u1")
    cache.invalidate("u1")

    assert cache.put(CacheKey("u1"), ["old"], before) is False
    assert cache.get(CacheKey("u1")) is None

    assert cache.put(CacheKey("u1"), ["new"], cache.generation("u1")) is True
    assert cache.get(CacheKey("u1")) == ["new"]


def test_invalidation_of_one_user_keeps_other_generations() -> None:
    cache = TaskQueryCache(clock=FakeClock())
    u2 = cache.generation("u2")
    cache.invalidate("u1")
    assert cache.generation("u1") != 0
    assert cache.generation("u2") == u2
