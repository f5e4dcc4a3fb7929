from __future__ import annotations

import time
from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram

_RESPONSE_TIME_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000)


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """
    某一时刻的指标读数（各计数器分别一致，整体不保证原子）。
    """

    requests_total: int
    requests_successful: int
    requests_failed: int
    average_response_time_ms: float
    cache_hits: int
    cache_misses: int
    uptime_seconds: int


class MetricsRecorder:
    """
    请求量、成功/失败、缓存命中/未命中与响应时间的计数器集合。

    每个实例持有独立的 CollectorRegistry，由服务或 CLI 调用方创建并注入，不注册到全局 registry。
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry(auto_describe=True)
        self._started_at = time.monotonic()

        self._requests = Counter(
            "crate_lens_requests",
            "Total requests handled",
            ["outcome"],
            registry=self.registry,
        )
        self._cache_lookups = Counter(
            "crate_lens_cache_lookups",
            "Response cache lookups",
            ["result"],
            registry=self.registry,
        )
        self._response_time = Histogram(
            "crate_lens_response_time_ms",
            "Request handling time in milliseconds",
            buckets=_RESPONSE_TIME_BUCKETS_MS,
            registry=self.registry,
        )

        # 预先创建各标签子项，未发生的事件读数为 0 而不是缺失
        for outcome in ("success", "failure"):
            self._requests.labels(outcome=outcome)
        for result in ("hit", "miss"):
            self._cache_lookups.labels(result=result)

    def record_request(self, success: bool, elapsed_ms: int) -> None:
        self._requests.labels(outcome="success" if success else "failure").inc()
        self._response_time.observe(max(0, int(elapsed_ms)))

    def record_cache_hit(self) -> None:
        self._cache_lookups.labels(result="hit").inc()

    def record_cache_miss(self) -> None:
        self._cache_lookups.labels(result="miss").inc()

    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self._started_at)

    def _sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        return self.registry.get_sample_value(name, labels or {}) or 0.0

    def snapshot(self) -> MetricsSnapshot:
        """
        读取全部计数器，并计算平均响应时间与运行时长。
        """
        successful = int(self._sample("crate_lens_requests_total", {"outcome": "success"}))
        failed = int(self._sample("crate_lens_requests_total", {"outcome": "failure"}))
        observed = self._sample("crate_lens_response_time_ms_count")
        total_time = self._sample("crate_lens_response_time_ms_sum")
        return MetricsSnapshot(
            requests_total=successful + failed,
            requests_successful=successful,
            requests_failed=failed,
            average_response_time_ms=total_time / observed if observed else 0.0,
            cache_hits=int(self._sample("crate_lens_cache_lookups_total", {"result": "hit"})),
            cache_misses=int(self._sample("crate_lens_cache_lookups_total", {"result": "miss"})),
            uptime_seconds=self.uptime_seconds(),
        )
