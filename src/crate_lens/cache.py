from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheSettings:
    """
    进程内响应缓存的配置。
    """

    enabled: bool = True
    ttl_s: int = 300
    max_entries: int = 1000


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """
    单条缓存记录（值 + 过期时刻，基于 monotonic 时钟）。
    """

    payload: Any
    expires_at: float


class ResponseCache:
    """
    带 TTL 的进程内缓存，可在多个并发请求间共享。

    只在写入且条目数超过 max_entries 时清理已过期条目，不维护 LRU 顺序：
    若没有条目过期，缓存可以暂时超过 max_entries。
    """

    def __init__(self, settings: CacheSettings) -> None:
        self.settings = settings
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Any | None:
        """
        读取缓存；不存在或已过期时返回 None，过期条目在此时被删除。
        """
        if not self.settings.enabled:
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return entry.payload

    def set(self, key: str, value: Any, ttl_s: int | None = None) -> None:
        """
        写入缓存；ttl_s 缺省时使用配置中的 TTL。
        """
        if not self.settings.enabled:
            return

        ttl = self.settings.ttl_s if ttl_s is None else ttl_s
        with self._lock:
            now = time.monotonic()
            if len(self._entries) > self.settings.max_entries:
                self._sweep_expired(now)
            self._entries[key] = CacheEntry(payload=value, expires_at=now + ttl)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _sweep_expired(self, now: float) -> None:
        before = len(self._entries)
        self._entries = {k: e for k, e in self._entries.items() if e.expires_at > now}
        log.debug("cache sweep removed %d expired entries", before - len(self._entries))
