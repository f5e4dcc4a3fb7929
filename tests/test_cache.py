from __future__ import annotations

import pytest

from crate_lens.cache import CacheSettings, ResponseCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr("crate_lens.cache.time.monotonic", fake)
    return fake


def test_cache_hit_before_ttl(clock: FakeClock) -> None:
    """
    TTL 内读取应命中缓存并返回写入的值。
    """
    cache = ResponseCache(CacheSettings(ttl_s=60))
    cache.set("check:serde:latest", {"exists": True})
    clock.now += 59
    assert cache.get("check:serde:latest") == {"exists": True}


def test_cache_entry_expires_after_ttl(clock: FakeClock) -> None:
    """
    超过 TTL 后读取返回 None，且过期条目被删除。
    """
    cache = ResponseCache(CacheSettings(ttl_s=60))
    cache.set("k", "v")
    clock.now += 60
    assert cache.get("k") is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default(clock: FakeClock) -> None:
    """
    set 显式指定的 ttl_s 优先于配置中的 TTL。
    """
    cache = ResponseCache(CacheSettings(ttl_s=60))
    cache.set("short", 1, ttl_s=5)
    cache.set("long", 2)
    clock.now += 10
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_disabled_cache_never_stores(clock: FakeClock) -> None:
    """
    关闭缓存时 set 不生效，get 总是返回 None。
    """
    cache = ResponseCache(CacheSettings(enabled=False))
    cache.set("k", "v")
    assert cache.get("k") is None
    assert len(cache) == 0
    assert cache.enabled is False


def test_cache_may_exceed_max_entries_when_nothing_expired(clock: FakeClock) -> None:
    """
    清理只删除已过期条目：没有过期条目时，缓存可以超过 max_entries。
    """
    cache = ResponseCache(CacheSettings(ttl_s=60, max_entries=1))
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    assert len(cache) == 3
    assert cache.get("a") == 1


def test_sweep_removes_expired_entries_when_over_limit(clock: FakeClock) -> None:
    """
    写入时条目数超过上限会触发清理，移除全部已过期条目。
    """
    cache = ResponseCache(CacheSettings(ttl_s=60, max_entries=1))
    cache.set("old-1", 1, ttl_s=1)
    cache.set("old-2", 2, ttl_s=1)
    clock.now += 5
    cache.set("new", 3)
    assert len(cache) == 1
    assert cache.get("new") == 3


def test_clear_removes_everything(clock: FakeClock) -> None:
    cache = ResponseCache(CacheSettings())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.clear()
    assert len(cache) == 0
